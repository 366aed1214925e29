"""
Consultas sobre el ledger de comprobantes.

Los filtros se traducen a una lista de condiciones en un único lugar
(build_conditions). El total y la página salen del mismo objeto Query, así
que ambos ven siempre exactamente el mismo predicado.
"""
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from app.common.dates import local_day_end, local_day_start
from app.common.exceptions import ComprobanteNotFound
from app.common.sql import like_pattern
from app.core.config import settings
from app.modules.comprobantes.models import Comprobante
from app.modules.comprobantes.schemas import LedgerFilters
from app.modules.sales.models import Customer, Sale

LIKE_ESCAPE = "/"


def build_conditions(filters: LedgerFilters) -> List[ColumnElement]:
    conditions = []

    if filters.type:
        conditions.append(Comprobante.document_type == filters.type)

    if filters.status:
        conditions.append(Comprobante.status == filters.status)

    # Rango inclusive por día calendario (zona horaria del negocio) sobre la fecha de envío
    if filters.date_from:
        conditions.append(Comprobante.sent_at >= local_day_start(filters.date_from))

    if filters.date_to:
        conditions.append(Comprobante.sent_at < local_day_end(filters.date_to))

    search = (filters.search or "").strip()
    if search:
        pattern = like_pattern(search, LIKE_ESCAPE)
        conditions.append(or_(
            Comprobante.customer_name.ilike(pattern, escape=LIKE_ESCAPE),
            Comprobante.series_number.ilike(pattern, escape=LIKE_ESCAPE),
        ))

    return conditions


class LedgerQueryEngine:
    def __init__(self, db: Session):
        self.db = db

    def _filtered(self, filters: LedgerFilters):
        return self.db.query(Comprobante).filter(*build_conditions(filters))

    def list(
        self,
        filters: LedgerFilters,
        page: int = 1,
        page_size: Optional[int] = None
    ) -> Tuple[List[Comprobante], int]:
        """Página de comprobantes y total bajo el mismo filtro"""
        page = max(page, 1)
        page_size = min(max(page_size or settings.DEFAULT_PAGE_SIZE, 1), settings.MAX_PAGE_SIZE)

        query = self._filtered(filters)
        total = query.count()

        # Más reciente primero; a igual fecha, correlativo ascendente
        items = query.order_by(
            Comprobante.sent_at.desc().nulls_last(),
            Comprobante.sequence_number.asc(),
            Comprobante.id.asc()
        ).offset((page - 1) * page_size).limit(page_size).all()

        return items, total

    def get(self, comprobante_id: int) -> Tuple[Comprobante, Sale, Optional[Customer]]:
        """Comprobante con los datos actuales de su venta y cliente"""
        row = self.db.query(Comprobante, Sale, Customer).join(
            Sale, Comprobante.sale_id == Sale.id
        ).outerjoin(
            Customer, Sale.customer_id == Customer.id
        ).filter(
            Comprobante.id == comprobante_id
        ).first()

        if row is None:
            raise ComprobanteNotFound(comprobante_id=comprobante_id)

        return row[0], row[1], row[2]
