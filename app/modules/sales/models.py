from app.database.database import Base
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.common.mixins import TimestampMixin
from app.modules.comprobantes.models import DocumentType


# Tablas del flujo de ventas. El módulo de comprobantes solo las lee:
# el alta de ventas y clientes pertenece al punto de venta.


class Customer(Base, TimestampMixin):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)  # Razón social o nombre completo
    document_type = Column(String(10), nullable=False, default="DNI")  # DNI, RUC, CE, PAS
    document_number = Column(String(20), nullable=False)

    sales = relationship("Sale", back_populates="customer")


class Sale(Base, TimestampMixin):
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    # Tipo de comprobante solicitado en caja (puede sobrescribirse al emitir)
    document_type = Column(Enum(DocumentType), nullable=True)
    sold_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    customer = relationship("Customer", back_populates="sales")
