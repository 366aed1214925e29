"""
Emisión de comprobantes hacia SUNAT.

Flujo: validar venta -> reservar correlativo (PENDING) -> marcar SENT ->
enviar -> ACCEPTED / REJECTED, o quedar SENT si SUNAT no respondió.

Cada comprobante admite un solo envío en curso: `submitting_at` funciona
como lease y se toma con un UPDATE condicional, de modo que dos reenvíos
simultáneos (incluso desde procesos distintos) no llegan los dos a SUNAT.
"""
import logging
from datetime import timedelta
from typing import Collection, List, Optional, Union

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.common.dates import utcnow
from app.common.exceptions import (
    AlreadyEmitted, AuthorityRejected, AuthorityUnreachable, ComprobanteNotFound,
    InvalidStateTransition, OutcomeNotPersisted, SaleNotFound, SubmissionInProgress
)
from app.core.config import settings
from app.modules.comprobantes.artifacts import ArtifactStore
from app.modules.comprobantes.documents import build_document
from app.modules.comprobantes.models import Comprobante, ComprobanteStatus, DocumentType
from app.modules.comprobantes.sequence import SequenceAllocator, resolve_document_type
from app.modules.comprobantes.state import OPEN_STATES, TERMINAL_STATES, apply_transition
from app.modules.sales.models import Sale
from app.modules.sunat import SunatGateway, get_gateway
from app.modules.sunat.port import AuthorityResponse

logger = logging.getLogger(__name__)

RESENDABLE = frozenset({ComprobanteStatus.SENT})
RECOVERABLE = OPEN_STATES


class EmissionService:
    def __init__(self, db: Session, gateway: Optional[SunatGateway] = None):
        self.db = db
        self.gateway = gateway or get_gateway()
        self.allocator = SequenceAllocator(db)
        self.artifacts = ArtifactStore(db)

    def emit(self, sale_id: int, document_type: Union[DocumentType, str, None] = None) -> Comprobante:
        """Emitir el comprobante de una venta"""
        sale = self.db.get(Sale, sale_id)
        if sale is None:
            raise SaleNotFound(sale_id=sale_id)

        existing = self.db.query(Comprobante).filter(Comprobante.sale_id == sale_id).first()
        if existing is not None:
            raise AlreadyEmitted(
                sale_id=sale_id,
                comprobante_id=existing.id,
                series_number=existing.series_number,
            )

        resolved = resolve_document_type(document_type or sale.document_type or DocumentType.RECEIPT)
        logger.info(f"Solicitando emisión de {resolved.value} para venta {sale_id}")

        comprobante = self.allocator.allocate(resolved, sale)
        return self._submit(comprobante)

    def resend(self, comprobante_id: int) -> Comprobante:
        """Reenviar un comprobante SENT con su mismo correlativo"""
        comprobante = self._claim(comprobante_id, RESENDABLE)
        logger.info(f"Reenviando {comprobante.series_number} (intento {comprobante.attempts + 1})")
        return self._submit(comprobante)

    def recover(self, comprobante_id: int) -> Comprobante:
        """Retomar un comprobante PENDING o SENT abandonado (usado por el barrido periódico)"""
        comprobante = self._claim(comprobante_id, RECOVERABLE)
        logger.info(f"Recuperando {comprobante.series_number} en estado {comprobante.status.value}")
        return self._submit(comprobante)

    def find_stale(self, older_than_minutes: Optional[int] = None) -> List[int]:
        """
        Ids de comprobantes sin resolver cuyo último envío es anterior al umbral.

        Los que ya agotaron MAX_SUBMISSION_ATTEMPTS quedan fuera: solo se
        reenvían a mano.
        """
        now = utcnow()
        cutoff = now - timedelta(minutes=older_than_minutes or settings.STALE_SUBMISSION_MINUTES)
        lease_cutoff = now - timedelta(seconds=settings.SUBMISSION_LEASE_SECONDS)

        rows = self.db.query(Comprobante.id).filter(
            Comprobante.status.in_(list(RECOVERABLE)),
            Comprobante.attempts < settings.MAX_SUBMISSION_ATTEMPTS,
            or_(Comprobante.submitting_at.is_(None), Comprobante.submitting_at < lease_cutoff),
            or_(
                Comprobante.sent_at < cutoff,
                and_(Comprobante.sent_at.is_(None), Comprobante.created_at < cutoff),
            )
        ).order_by(Comprobante.id).all()
        return [row.id for row in rows]

    def _claim(self, comprobante_id: int, allowed: Collection[ComprobanteStatus]) -> Comprobante:
        now = utcnow()
        lease_cutoff = now - timedelta(seconds=settings.SUBMISSION_LEASE_SECONDS)

        result = self.db.execute(
            update(Comprobante)
            .where(
                Comprobante.id == comprobante_id,
                Comprobante.status.in_(list(allowed)),
                or_(Comprobante.submitting_at.is_(None), Comprobante.submitting_at < lease_cutoff),
            )
            .values(submitting_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        comprobante = self.db.get(Comprobante, comprobante_id)
        if result.rowcount == 1:
            return comprobante

        if comprobante is None:
            raise ComprobanteNotFound(comprobante_id=comprobante_id)
        if comprobante.status in TERMINAL_STATES:
            raise InvalidStateTransition(
                f"El comprobante {comprobante.series_number} ya está en estado final {comprobante.status.value}",
                comprobante_id=comprobante_id,
                status=comprobante.status.value,
            )
        if comprobante.status not in allowed:
            raise InvalidStateTransition(
                f"No se puede reenviar un comprobante en estado {comprobante.status.value}",
                comprobante_id=comprobante_id,
                status=comprobante.status.value,
            )
        raise SubmissionInProgress(comprobante_id=comprobante_id)

    def _submit(self, comprobante: Comprobante) -> Comprobante:
        """Envía a SUNAT un comprobante cuyo lease ya tiene el llamador"""
        comprobante_id = comprobante.id
        try:
            apply_transition(comprobante, ComprobanteStatus.SENT)
            comprobante.sent_at = utcnow()
            comprobante.attempts = (comprobante.attempts or 0) + 1
            comprobante.last_error = None
            self.db.commit()

            document = build_document(comprobante)
            series_number = comprobante.series_number
            try:
                response = self.gateway.submit(document)
            except AuthorityUnreachable as e:
                comprobante.last_error = e.message
                self._save_outcome(comprobante_id, series_number)
                logger.warning(f"{series_number} queda SENT: {e.message}")
                raise AuthorityUnreachable(
                    e.message,
                    comprobante_id=comprobante_id,
                    series_number=series_number,
                ) from e

            self._apply_response(comprobante, response)
            self._save_outcome(comprobante_id, series_number)
        finally:
            self._release(comprobante_id)

        if comprobante.status == ComprobanteStatus.REJECTED:
            raise AuthorityRejected(
                comprobante.rejection_reason,
                comprobante_id=comprobante.id,
                series_number=comprobante.series_number,
            )
        return comprobante

    def _apply_response(self, comprobante: Comprobante, response: AuthorityResponse) -> None:
        if response.tracking_id:
            comprobante.tracking_id = response.tracking_id

        if response.accepted and response.artifact_xml:
            apply_transition(comprobante, ComprobanteStatus.ACCEPTED)
            comprobante.accepted_at = utcnow()
            self.artifacts.put(comprobante, response.artifact_xml)
            logger.info(f"{comprobante.series_number} aceptado por SUNAT")
        elif response.rejected:
            apply_transition(comprobante, ComprobanteStatus.REJECTED)
            comprobante.rejection_reason = response.description or "Rechazado por SUNAT"
            logger.warning(f"{comprobante.series_number} rechazado por SUNAT: {comprobante.rejection_reason}")
        elif response.pending:
            logger.info(f"{comprobante.series_number} pendiente en SUNAT (ticket {comprobante.tracking_id})")
        else:
            # Sin XML firmado no se da por aceptado; queda para reenvío
            comprobante.last_error = "SUNAT aceptó el comprobante sin devolver el XML firmado"
            logger.warning(f"{comprobante.series_number} aceptado sin XML, queda SENT")

    def _save_outcome(self, comprobante_id: int, series_number: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"No se pudo guardar la respuesta de SUNAT para {series_number}: {e}")
            raise OutcomeNotPersisted(
                comprobante_id=comprobante_id,
                series_number=series_number,
            ) from e

    def _release(self, comprobante_id: int) -> None:
        try:
            self.db.execute(
                update(Comprobante)
                .where(Comprobante.id == comprobante_id)
                .values(submitting_at=None)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            # El lease vence solo tras SUBMISSION_LEASE_SECONDS
            logger.error(f"No se pudo liberar el envío en curso del comprobante {comprobante_id}: {e}")
