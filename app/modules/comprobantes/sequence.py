"""
Reserva de correlativos por (tipo de comprobante, serie).

El siguiente número es 1 + MAX(sequence_number) de la serie. Para que dos
reservas concurrentes nunca calculen el mismo valor, la lectura del máximo y
la inserción del comprobante ocurren en una sola transacción serializada por
clave:

- dentro del proceso, un lock por (tipo, serie);
- entre procesos, SELECT ... FOR UPDATE sobre la fila ancla de la serie;
- como última defensa, la restricción única (tipo, serie, correlativo).

Un choque contra la restricción se trata como conflicto transitorio y se
reintenta un número acotado de veces. La reserva y la fila del comprobante
se confirman juntas: si algo falla se hace rollback y el número no cuenta
como emitido.
"""
import logging
import threading
import time
from typing import Any, Dict, Tuple, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.common.dates import utcnow
from app.common.exceptions import (
    AllocationConflict, AllocationFailed, AlreadyEmitted, InvalidDocumentType
)
from app.core.config import settings
from app.modules.comprobantes.models import (
    Comprobante, ComprobanteSeries, ComprobanteStatus, DocumentType
)
from app.modules.sales.models import Sale

logger = logging.getLogger(__name__)

# Cliente genérico para boletas sin cliente identificado
GENERIC_CUSTOMER_NAME = "CLIENTES VARIOS"
GENERIC_CUSTOMER_DOCUMENT_TYPE = "0"
GENERIC_CUSTOMER_DOCUMENT_NUMBER = "00000000"

_key_locks: Dict[Tuple[DocumentType, str], threading.Lock] = {}
_key_locks_guard = threading.Lock()


def _lock_for(document_type: DocumentType, series: str) -> threading.Lock:
    with _key_locks_guard:
        lock = _key_locks.get((document_type, series))
        if lock is None:
            lock = _key_locks[(document_type, series)] = threading.Lock()
        return lock


def resolve_document_type(value: Union[DocumentType, str, None]) -> DocumentType:
    if isinstance(value, DocumentType):
        return value
    try:
        return DocumentType(value)
    except ValueError:
        raise InvalidDocumentType(f"Tipo no válido: {value}")


def sale_snapshot(sale: Sale) -> Dict[str, Any]:
    """Datos de la venta y del cliente que quedan congelados en el comprobante"""
    customer = sale.customer
    return {
        "sale_id": sale.id,
        "total": sale.total,
        "customer_name": customer.name if customer else GENERIC_CUSTOMER_NAME,
        "customer_document_type": customer.document_type if customer else GENERIC_CUSTOMER_DOCUMENT_TYPE,
        "customer_document_number": customer.document_number if customer else GENERIC_CUSTOMER_DOCUMENT_NUMBER,
    }


class SequenceAllocator:
    def __init__(self, db: Session):
        self.db = db
        self.max_attempts = settings.ALLOCATION_MAX_ATTEMPTS
        self.retry_backoff = settings.ALLOCATION_RETRY_BACKOFF

    def series_for(self, document_type: Union[DocumentType, str]) -> str:
        return resolve_document_type(document_type).series

    def ensure_series(self) -> None:
        """Crea las filas ancla de cada serie si no existen"""
        for document_type in DocumentType:
            exists = self.db.query(ComprobanteSeries.id).filter(
                ComprobanteSeries.document_type == document_type,
                ComprobanteSeries.series == document_type.series
            ).first()
            if exists:
                continue
            try:
                self.db.add(ComprobanteSeries(document_type=document_type, series=document_type.series))
                self.db.commit()
                logger.info(f"Serie {document_type.series} registrada para {document_type.value}")
            except IntegrityError:
                # Otro proceso la creó primero
                self.db.rollback()

    def peek(self, document_type: Union[DocumentType, str]) -> Tuple[DocumentType, str, int]:
        """
        Siguiente correlativo que recibiría la serie, solo para vista previa.
        No reserva nada: dos llamadas seguidas devuelven el mismo número.
        """
        resolved = resolve_document_type(document_type)
        series = resolved.series
        return resolved, series, self._current_max(resolved, series) + 1

    def allocate(self, document_type: Union[DocumentType, str], sale: Sale) -> Comprobante:
        """
        Reserva el siguiente correlativo y crea el comprobante en PENDING,
        ya confirmado en base de datos.
        """
        resolved = resolve_document_type(document_type)
        series = resolved.series
        snapshot = sale_snapshot(sale)

        with _lock_for(resolved, series):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    comprobante = self._reserve(resolved, series, snapshot)
                except AllocationConflict as conflict:
                    logger.warning(
                        f"Conflicto reservando correlativo {series} (intento {attempt}/{self.max_attempts}): "
                        f"{conflict.message}"
                    )
                    time.sleep(self.retry_backoff * attempt)
                    continue

                logger.info(
                    f"Correlativo {comprobante.series_number} reservado para venta {snapshot['sale_id']}"
                )
                return comprobante

        logger.error(f"No se pudo reservar correlativo {series} tras {self.max_attempts} intentos")
        raise AllocationFailed(
            f"No se pudo reservar el correlativo de la serie {series}",
            series=series,
        )

    def _reserve(self, document_type: DocumentType, series: str, snapshot: Dict[str, Any]) -> Comprobante:
        try:
            self._lock_series(document_type, series)
            next_number = self._current_max(document_type, series) + 1

            comprobante = Comprobante(
                document_type=document_type,
                series=series,
                sequence_number=next_number,
                status=ComprobanteStatus.PENDING,
                attempts=0,
                submitting_at=utcnow(),  # El emisor ya tiene el envío en curso
                **snapshot
            )
            self.db.add(comprobante)
            self.db.flush()
            self.db.commit()
            return comprobante

        except (IntegrityError, OperationalError) as e:
            self.db.rollback()
            if self._sale_has_comprobante(snapshot["sale_id"]):
                raise AlreadyEmitted(sale_id=snapshot["sale_id"]) from e
            raise AllocationConflict(str(getattr(e, "orig", e))) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error persistiendo la reserva de {series}: {e}")
            raise AllocationFailed(
                f"No se pudo reservar el correlativo de la serie {series}",
                series=series,
            ) from e

    def _lock_series(self, document_type: DocumentType, series: str) -> None:
        anchor = self.db.query(ComprobanteSeries).filter(
            ComprobanteSeries.document_type == document_type,
            ComprobanteSeries.series == series
        ).with_for_update().first()

        if anchor is None:
            self.db.add(ComprobanteSeries(document_type=document_type, series=series))
            self.db.flush()

    def _current_max(self, document_type: DocumentType, series: str) -> int:
        return self.db.query(
            func.coalesce(func.max(Comprobante.sequence_number), 0)
        ).filter(
            Comprobante.document_type == document_type,
            Comprobante.series == series
        ).scalar()

    def _sale_has_comprobante(self, sale_id: int) -> bool:
        return self.db.query(Comprobante.id).filter(Comprobante.sale_id == sale_id).first() is not None
