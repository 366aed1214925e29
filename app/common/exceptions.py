"""
Errores de dominio del módulo de comprobantes y su traducción a HTTP.

Cada error expone un `kind` estable y un flag `retryable` para que el cliente
sepa si corresponde reintentar (p. ej. con /resend) o si el resultado es final.
"""
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)


class BillingError(Exception):
    kind = "billing_error"
    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False
    default_message = "Error de facturación"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "kind": self.kind,
            "retryable": self.retryable,
            **self.context,
        }


class InvalidDocumentType(BillingError):
    kind = "invalid_document_type"
    default_message = "Tipo de comprobante no válido"


class SaleNotFound(BillingError):
    kind = "sale_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Venta no encontrada"


class CustomerNotFound(BillingError):
    kind = "customer_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Cliente no encontrado"


class ComprobanteNotFound(BillingError):
    kind = "comprobante_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Comprobante no encontrado"


class ArtifactNotFound(BillingError):
    kind = "artifact_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "XML no encontrado"


class AlreadyEmitted(BillingError):
    kind = "already_emitted"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Ya existe un comprobante para esta venta"


class InvalidStateTransition(BillingError):
    kind = "invalid_state_transition"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Transición de estado no permitida"


class SubmissionInProgress(BillingError):
    kind = "submission_in_progress"
    status_code = status.HTTP_409_CONFLICT
    retryable = True
    default_message = "El comprobante tiene un envío en curso"


class ArtifactNotReady(BillingError):
    kind = "artifact_not_ready"
    status_code = status.HTTP_409_CONFLICT
    retryable = True
    default_message = "El XML aún no está disponible: el comprobante no fue aceptado"


class AllocationConflict(BillingError):
    """Choque transitorio al reservar un correlativo; se reintenta localmente."""
    kind = "allocation_conflict"
    status_code = status.HTTP_409_CONFLICT
    retryable = True
    default_message = "Conflicto al reservar el correlativo"


class AllocationFailed(BillingError):
    kind = "allocation_failed"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_message = "No se pudo reservar el correlativo"


class OutcomeNotPersisted(BillingError):
    kind = "outcome_not_persisted"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_message = "No se pudo guardar la respuesta de SUNAT, reenvíe el comprobante"


class AuthorityUnreachable(BillingError):
    kind = "authority_unreachable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_message = "SUNAT no disponible, reintente el envío"


class AuthorityRejected(BillingError):
    kind = "authority_rejected"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Comprobante rechazado por SUNAT"


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(f"{exc.kind} en {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.kind} en {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}" for error in errors
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "error": message or "Solicitud inválida",
            "kind": "validation_error",
            "retryable": False,
        },
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Error no controlado en {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "Error interno del servidor",
            "kind": "internal_error",
            "retryable": False,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BillingError, billing_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
