from pydantic import BaseModel, Field, computed_field
from decimal import Decimal
from typing import Optional, List
from datetime import date, datetime

from app.modules.comprobantes.models import DocumentType, ComprobanteStatus
from app.modules.comprobantes.documents import compute_igv


# Requests
class EmitRequest(BaseModel):
    type: Optional[str] = Field(None, description="FACTURA o BOLETA; por defecto el tipo solicitado en la venta")


class NextNumberRequest(BaseModel):
    type: str = Field(..., description="FACTURA o BOLETA")
    customer_id: Optional[int] = Field(None, description="Cliente para el que se previsualiza el número")


class LedgerFilters(BaseModel):
    type: Optional[DocumentType] = None
    status: Optional[ComprobanteStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = Field(None, max_length=100)


# Responses
class ComprobanteOut(BaseModel):
    id: int
    sale_id: int
    document_type: DocumentType
    series: str
    sequence_number: int
    series_number: str
    correlativo: str
    status: ComprobanteStatus
    total: Decimal
    customer_name: str
    customer_document_type: str
    customer_document_number: str
    sent_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    attempts: int
    tracking_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    last_error: Optional[str] = None
    has_artifact: bool = False
    created_at: datetime

    @computed_field
    @property
    def igv(self) -> Decimal:
        return compute_igv(self.total)

    class Config:
        from_attributes = True


class ComprobanteDetail(ComprobanteOut):
    """Comprobante con los datos actuales de la venta y del cliente"""
    sale_total: Optional[Decimal] = None
    sold_at: Optional[datetime] = None
    current_customer_name: Optional[str] = None


class ComprobanteResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    comprobante: ComprobanteOut


class ComprobanteDetailResponse(BaseModel):
    success: bool = True
    comprobante: ComprobanteDetail


class ComprobanteList(BaseModel):
    success: bool = True
    total: int
    page: int
    page_size: int
    comprobantes: List[ComprobanteOut]


class NextNumberResponse(BaseModel):
    success: bool = True
    type: DocumentType
    series: str
    sequence_number: int
    correlativo: str
    series_number: str
