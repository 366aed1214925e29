from app.database.database import Base
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Numeric, Enum, Text,
    UniqueConstraint, CheckConstraint, exists
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import relationship, column_property
from sqlalchemy.sql import func
from app.common.mixins import TimestampMixin
from app.common.sql import zero_pad, format_correlativo
import enum


class DocumentType(str, enum.Enum):
    INVOICE = "FACTURA"
    RECEIPT = "BOLETA"

    @classmethod
    def _missing_(cls, value):
        # Acepta tanto "FACTURA" como "INVOICE", sin distinguir mayúsculas
        if isinstance(value, str):
            normalized = value.strip().upper()
            for member in cls:
                if normalized in (member.name, member.value):
                    return member
        return None

    @property
    def series(self) -> str:
        return SERIES_BY_TYPE[self]

    @property
    def sunat_code(self) -> str:
        return SUNAT_CODES[self]


# La serie no la elige el usuario: se deriva del tipo
SERIES_BY_TYPE = {
    DocumentType.INVOICE: "F001",
    DocumentType.RECEIPT: "B001",
}

# Catálogo 01 de SUNAT
SUNAT_CODES = {
    DocumentType.INVOICE: "01",
    DocumentType.RECEIPT: "03",
}


class ComprobanteStatus(str, enum.Enum):
    PENDING = "PENDING"      # Correlativo reservado, aún no enviado
    SENT = "SENT"            # Envío intentado; reintentable con /resend
    ACCEPTED = "ACCEPTED"    # Aceptado por SUNAT, XML firmado disponible
    REJECTED = "REJECTED"    # Rechazado por SUNAT (final)


class ComprobanteSeries(Base, TimestampMixin):
    """Fila ancla por (tipo, serie): se bloquea durante la reserva del correlativo"""
    __tablename__ = "comprobante_series"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_type = Column(Enum(DocumentType), nullable=False)
    series = Column(String(4), nullable=False)

    __table_args__ = (
        UniqueConstraint("document_type", "series", name="uq_series_type_series"),
    )


class Comprobante(Base, TimestampMixin):
    __tablename__ = "comprobantes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False)

    # Numeración
    document_type = Column(Enum(DocumentType), nullable=False)
    series = Column(String(4), nullable=False)
    sequence_number = Column(Integer, nullable=False)

    status = Column(Enum(ComprobanteStatus), nullable=False, default=ComprobanteStatus.PENDING)

    # Snapshot al momento de la emisión (no cambia si el cliente se edita luego)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    customer_name = Column(String(200), nullable=False)
    customer_document_type = Column(String(10), nullable=False)
    customer_document_number = Column(String(20), nullable=False)

    # Envío a SUNAT
    sent_at = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    tracking_id = Column(String(100), nullable=True)  # Ticket devuelto por SUNAT
    rejection_reason = Column(Text, nullable=True)
    last_error = Column(Text, nullable=True)
    submitting_at = Column(DateTime(timezone=True), nullable=True)  # Envío en curso (lease)

    # Relationships
    sale = relationship("Sale")
    artifact = relationship("ComprobanteArtifact", back_populates="comprobante", uselist=False)

    __table_args__ = (
        UniqueConstraint("document_type", "series", "sequence_number", name="uq_comprobante_type_series_number"),
        UniqueConstraint("sale_id", name="uq_comprobante_sale"),
        CheckConstraint("sequence_number > 0", name="ck_comprobante_sequence_positive"),
    )

    @hybrid_property
    def series_number(self):
        """F001-00000001"""
        return f"{self.series}-{format_correlativo(self.sequence_number)}"

    @series_number.expression
    def series_number(cls):
        return cls.series + "-" + zero_pad(cls.sequence_number)

    @property
    def correlativo(self) -> str:
        return format_correlativo(self.sequence_number)


class ComprobanteArtifact(Base):
    """XML firmado de un comprobante aceptado"""
    __tablename__ = "comprobante_artifacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    comprobante_id = Column(Integer, ForeignKey("comprobantes.id"), nullable=False, unique=True)
    xml = Column(Text, nullable=False)
    digest = Column(String(64), nullable=False)  # sha256 del XML
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    comprobante = relationship("Comprobante", back_populates="artifact")


Comprobante.has_artifact = column_property(
    exists()
    .where(ComprobanteArtifact.comprobante_id == Comprobante.id)
    .correlate_except(ComprobanteArtifact)
)
