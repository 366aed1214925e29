"""
Celery tasks for comprobantes
"""
import logging

from app.core.celery import celery_app
from app.common.exceptions import AuthorityRejected, AuthorityUnreachable, BillingError, OutcomeNotPersisted
from app.database.database import SessionLocal
from app.modules.comprobantes.emission import EmissionService
from app.modules.comprobantes.models import ComprobanteStatus

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=5)
def resend_comprobante_task(self, comprobante_id: int):
    """
    Reenviar un comprobante SENT en segundo plano.
    Si SUNAT sigue sin responder, o su respuesta no se pudo guardar, se
    reintenta con backoff exponencial.
    """
    db = SessionLocal()
    try:
        comprobante = EmissionService(db).resend(comprobante_id)
        logger.info(f"Reenvío de {comprobante.series_number}: {comprobante.status.value}")
        return {
            "comprobante_id": comprobante_id,
            "series_number": comprobante.series_number,
            "status": comprobante.status.value,
        }

    except (AuthorityUnreachable, OutcomeNotPersisted) as exc:
        countdown = 60 * (2 ** self.request.retries)
        logger.warning(f"Reenvío de comprobante {comprobante_id} sin resolver ({exc.kind}), reintento en {countdown}s")
        raise self.retry(exc=exc, countdown=countdown)

    except BillingError as e:
        # Rechazo, estado final o envío en curso: no hay nada que reintentar aquí
        logger.info(f"Reenvío de comprobante {comprobante_id} descartado: {e.kind} - {e.message}")
        return {"comprobante_id": comprobante_id, "error": e.kind}

    finally:
        db.close()


@celery_app.task
def sweep_stale_comprobantes():
    """
    Tarea periódica: retoma comprobantes PENDING o SENT que quedaron sin
    respuesta (proceso caído a mitad del envío, SUNAT sin responder, etc.)
    """
    db = SessionLocal()
    summary = {"found": 0, "accepted": 0, "rejected": 0, "still_sent": 0, "skipped": 0}
    try:
        service = EmissionService(db)
        stale_ids = service.find_stale()
        summary["found"] = len(stale_ids)

        for comprobante_id in stale_ids:
            try:
                comprobante = service.recover(comprobante_id)
            except (AuthorityUnreachable, OutcomeNotPersisted):
                summary["still_sent"] += 1
                continue
            except AuthorityRejected:
                summary["rejected"] += 1
                continue
            except BillingError as e:
                logger.info(f"Comprobante {comprobante_id} omitido en el barrido: {e.kind}")
                summary["skipped"] += 1
                continue

            if comprobante.status == ComprobanteStatus.ACCEPTED:
                summary["accepted"] += 1
            else:
                summary["still_sent"] += 1

        if summary["found"]:
            logger.info(f"Barrido de comprobantes pendientes: {summary}")
        return summary

    finally:
        db.close()
