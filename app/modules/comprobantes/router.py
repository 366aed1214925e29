from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from typing import Optional
from datetime import date

from app.common.exceptions import CustomerNotFound
from app.common.sql import format_correlativo
from app.core.config import settings
from app.dependencies.dbDependecies import db_dependency
from app.modules.comprobantes.artifacts import ArtifactStore
from app.modules.comprobantes.dependencies import (
    get_allocator, get_artifact_store, get_emission_service, get_ledger
)
from app.modules.comprobantes.emission import EmissionService
from app.modules.comprobantes.ledger import LedgerQueryEngine
from app.modules.comprobantes.models import ComprobanteStatus
from app.modules.comprobantes.schemas import (
    ComprobanteDetail, ComprobanteDetailResponse, ComprobanteList, ComprobanteOut,
    ComprobanteResponse, EmitRequest, LedgerFilters, NextNumberRequest, NextNumberResponse
)
from app.modules.comprobantes.sequence import SequenceAllocator, resolve_document_type
from app.modules.sales.models import Customer

router = APIRouter(prefix="/comprobantes", tags=["Comprobantes"])


@router.post("/sales/{sale_id}/emit", response_model=ComprobanteResponse, status_code=status.HTTP_201_CREATED)
def emit_comprobante(
    sale_id: int,
    payload: Optional[EmitRequest] = None,
    service: EmissionService = Depends(get_emission_service)
):
    """
    Emitir el comprobante electrónico de una venta

    Reserva el siguiente correlativo de la serie (F001 para facturas, B001
    para boletas) y lo envía a SUNAT. Si SUNAT no responde el comprobante
    queda SENT y se puede reenviar con el mismo número.
    """
    comprobante = service.emit(sale_id, payload.type if payload else None)
    return ComprobanteResponse(
        message=f"Comprobante {comprobante.series_number} aceptado por SUNAT"
        if comprobante.status == ComprobanteStatus.ACCEPTED
        else f"Comprobante {comprobante.series_number} enviado, pendiente de respuesta de SUNAT",
        comprobante=ComprobanteOut.model_validate(comprobante)
    )


@router.get("", response_model=ComprobanteList)
def list_comprobantes(
    type: Optional[str] = Query(None, description="FACTURA o BOLETA"),
    status: Optional[ComprobanteStatus] = Query(None, description="Estado del comprobante"),
    date_from: Optional[date] = Query(None, description="Fecha de envío inicial (YYYY-MM-DD)"),
    date_to: Optional[date] = Query(None, description="Fecha de envío final (YYYY-MM-DD)"),
    search: Optional[str] = Query(None, max_length=100, description="Cliente o número (F001-00000001)"),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    ledger: LedgerQueryEngine = Depends(get_ledger)
):
    """
    Listar comprobantes con filtros combinables

    Orden: fecha de envío descendente y, a igual fecha, correlativo ascendente.
    `total` siempre refleja todos los comprobantes que cumplen el filtro.
    """
    filters = LedgerFilters(
        type=resolve_document_type(type) if type else None,
        status=status,
        date_from=date_from,
        date_to=date_to,
        search=search
    )
    items, total = ledger.list(filters, page, page_size)
    return ComprobanteList(
        total=total,
        page=page,
        page_size=page_size,
        comprobantes=[ComprobanteOut.model_validate(item) for item in items]
    )


@router.post("/next-number", response_model=NextNumberResponse)
def next_number(
    payload: NextNumberRequest,
    db: db_dependency,
    allocator: SequenceAllocator = Depends(get_allocator)
):
    """Vista previa del siguiente correlativo. No reserva el número."""
    if payload.customer_id is not None and db.get(Customer, payload.customer_id) is None:
        raise CustomerNotFound(customer_id=payload.customer_id)

    document_type, series, number = allocator.peek(payload.type)
    preview = format_correlativo(number)
    return NextNumberResponse(
        type=document_type,
        series=series,
        sequence_number=number,
        correlativo=preview,
        series_number=f"{series}-{preview}"
    )


@router.get("/{comprobante_id}", response_model=ComprobanteDetailResponse)
def get_comprobante(comprobante_id: int, ledger: LedgerQueryEngine = Depends(get_ledger)):
    """Detalle de un comprobante con los datos actuales de la venta y el cliente"""
    comprobante, sale, customer = ledger.get(comprobante_id)
    detail = ComprobanteDetail.model_validate(comprobante).model_copy(update={
        "sale_total": sale.total,
        "sold_at": sale.sold_at,
        "current_customer_name": customer.name if customer else None,
    })
    return ComprobanteDetailResponse(comprobante=detail)


@router.get("/{comprobante_id}/xml")
def download_xml(comprobante_id: int, artifacts: ArtifactStore = Depends(get_artifact_store)):
    """Descargar el XML firmado. Solo disponible para comprobantes ACCEPTED."""
    xml = artifacts.get(comprobante_id)
    return Response(
        content=xml,
        media_type="application/xml",
        headers={"Content-Disposition": f'attachment; filename="comprobante-{comprobante_id}.xml"'}
    )


@router.post("/{comprobante_id}/resend", response_model=ComprobanteResponse)
def resend_comprobante(
    comprobante_id: int,
    service: EmissionService = Depends(get_emission_service)
):
    """
    Reenviar a SUNAT un comprobante SENT

    Conserva serie y correlativo. Un comprobante ACCEPTED o REJECTED no se
    puede reenviar.
    """
    comprobante = service.resend(comprobante_id)
    return ComprobanteResponse(
        message=f"Comprobante {comprobante.series_number} reenviado",
        comprobante=ComprobanteOut.model_validate(comprobante)
    )
