"""
Armado del documento que se envía a SUNAT a partir de un comprobante reservado.
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from app.core.config import settings
from app.modules.comprobantes.models import Comprobante

CENTS = Decimal("0.01")


def compute_igv(total: Optional[Decimal]) -> Decimal:
    """IGV informativo: total de la venta por la tasa vigente, a 2 decimales"""
    if not total:
        return Decimal("0.00")
    return (Decimal(total) * settings.IGV_RATE).quantize(CENTS, rounding=ROUND_HALF_UP)


def local_date(value: Optional[datetime]) -> str:
    if value is None:
        value = datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(ZoneInfo(settings.TIMEZONE)).date().isoformat()


def build_document(comprobante: Comprobante) -> Dict[str, Any]:
    total = Decimal(comprobante.total or 0).quantize(CENTS)
    return {
        "emisor": {
            "ruc": settings.COMPANY_RUC,
            "razon_social": settings.COMPANY_NAME,
        },
        "tipo_comprobante": comprobante.document_type.sunat_code,
        "tipo_nombre": comprobante.document_type.value,
        "serie": comprobante.series,
        "numero": comprobante.sequence_number,
        "serie_numero": comprobante.series_number,
        # La fecha de emisión es la de la reserva: no cambia en los reenvíos
        "fecha_emision": local_date(comprobante.created_at),
        "moneda": settings.CURRENCY,
        "cliente": {
            "tipo_documento": comprobante.customer_document_type,
            "numero_documento": comprobante.customer_document_number,
            "nombre": comprobante.customer_name,
        },
        "totales": {
            "igv": str(compute_igv(total)),
            "total": str(total),
        },
    }
