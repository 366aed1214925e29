"""
Tests para el módulo de Comprobantes

Cubren:
- Reserva de correlativos (orden, concurrencia, rollback, vista previa)
- Máquina de estados y emisión contra el gateway falso de SUNAT
- Reenvío con el mismo número y exclusión de envíos simultáneos
- Consultas del ledger (filtros, paginación, orden, búsqueda)
- XML firmado y endpoints HTTP
- Barrido periódico de comprobantes sin respuesta
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.common.dates import utcnow
from app.common.exceptions import (
    AllocationFailed, AlreadyEmitted, ArtifactNotReady, AuthorityRejected,
    AuthorityUnreachable, ComprobanteNotFound, InvalidDocumentType,
    InvalidStateTransition, OutcomeNotPersisted, SaleNotFound, SubmissionInProgress
)
from app.core.config import settings
from app.database.database import SessionLocal
from app.modules.comprobantes.artifacts import ArtifactStore
from app.modules.comprobantes.documents import build_document, compute_igv
from app.modules.comprobantes.emission import EmissionService
from app.modules.comprobantes.ledger import LedgerQueryEngine
from app.modules.comprobantes.models import (
    Comprobante, ComprobanteArtifact, ComprobanteStatus, DocumentType
)
from app.modules.comprobantes.schemas import LedgerFilters
from app.modules.comprobantes.sequence import (
    GENERIC_CUSTOMER_NAME, SequenceAllocator, resolve_document_type
)
from app.modules.comprobantes.state import (
    ALLOWED_TRANSITIONS, OPEN_STATES, TERMINAL_STATES, apply_transition, can_transition
)
from app.modules.comprobantes.tasks import resend_comprobante_task, sweep_stale_comprobantes
from app.modules.sales.models import Customer, Sale
from app.modules.sunat import set_gateway
from app.modules.sunat.fake import ACCEPT, PENDING, REJECT, UNREACHABLE, FakeSunatGateway
from app.modules.sunat.port import AuthorityResponse


API = "/api/v1/comprobantes"
UTC = timezone.utc


# ===== HELPERS =====

def _issue(db, sale, document_type, status=ComprobanteStatus.SENT, sent_at=None):
    """Reserva un correlativo y deja el comprobante en el estado indicado"""
    comprobante = SequenceAllocator(db).allocate(document_type, sale)
    comprobante.status = status
    comprobante.sent_at = sent_at
    comprobante.submitting_at = None
    db.commit()
    return comprobante


def _numbers(items):
    return [item.series_number for item in items]


# ===== TESTS DE TIPOS Y SERIES =====

class TestDocumentTypes:
    """Resolución de tipos y series"""

    def test_series_derived_from_type(self):
        assert DocumentType.INVOICE.series == "F001"
        assert DocumentType.RECEIPT.series == "B001"
        assert DocumentType.INVOICE.sunat_code == "01"
        assert DocumentType.RECEIPT.sunat_code == "03"

    @pytest.mark.parametrize("value,expected", [
        ("FACTURA", DocumentType.INVOICE),
        ("factura", DocumentType.INVOICE),
        ("INVOICE", DocumentType.INVOICE),
        ("BOLETA", DocumentType.RECEIPT),
        ("receipt", DocumentType.RECEIPT),
    ])
    def test_resolve_accepts_names_and_values(self, value, expected):
        assert resolve_document_type(value) is expected

    @pytest.mark.parametrize("value", ["NOTA", "", None, "F001"])
    def test_resolve_rejects_unknown(self, value):
        with pytest.raises(InvalidDocumentType):
            resolve_document_type(value)


# ===== TESTS DE RESERVA DE CORRELATIVOS =====

class TestSequenceAllocator:
    """Correlativos únicos y crecientes por (tipo, serie)"""

    def test_first_number_is_one(self, db_session, make_sale):
        sale = make_sale()
        comprobante = SequenceAllocator(db_session).allocate(DocumentType.INVOICE, sale)

        assert comprobante.series == "F001"
        assert comprobante.sequence_number == 1
        assert comprobante.series_number == "F001-00000001"
        assert comprobante.status == ComprobanteStatus.PENDING

    def test_numbers_increase_per_series(self, db_session, make_sale):
        allocator = SequenceAllocator(db_session)

        invoices = [allocator.allocate(DocumentType.INVOICE, make_sale()) for _ in range(3)]
        receipts = [allocator.allocate(DocumentType.RECEIPT, make_sale()) for _ in range(2)]

        assert [c.sequence_number for c in invoices] == [1, 2, 3]
        assert [c.sequence_number for c in receipts] == [1, 2]
        assert receipts[-1].series_number == "B001-00000002"

    def test_invalid_type_creates_nothing(self, db_session, make_sale):
        sale = make_sale()
        with pytest.raises(InvalidDocumentType):
            SequenceAllocator(db_session).allocate("NOTA_CREDITO", sale)

        assert db_session.query(Comprobante).count() == 0

    def test_snapshot_of_customer(self, db_session, make_sale, sample_customer):
        sale = make_sale(customer=sample_customer)
        comprobante = SequenceAllocator(db_session).allocate(DocumentType.INVOICE, sale)

        assert comprobante.customer_name == "Distribuidora Andina S.A.C."
        assert comprobante.customer_document_number == "20512345678"
        assert comprobante.total == Decimal("118.00")

    def test_sale_without_customer_uses_generic_customer(self, db_session, make_sale):
        comprobante = SequenceAllocator(db_session).allocate(DocumentType.RECEIPT, make_sale())
        assert comprobante.customer_name == GENERIC_CUSTOMER_NAME

    def test_peek_does_not_consume(self, db_session, make_sale):
        allocator = SequenceAllocator(db_session)

        assert allocator.peek("FACTURA")[2] == 1
        assert allocator.peek("FACTURA")[2] == 1

        allocator.allocate(DocumentType.INVOICE, make_sale())
        document_type, series, number = allocator.peek("FACTURA")

        assert (document_type, series, number) == (DocumentType.INVOICE, "F001", 2)
        assert allocator.peek("BOLETA")[2] == 1

    def test_rolled_back_allocation_does_not_count(self, db_session, make_sale, monkeypatch):
        allocator = SequenceAllocator(db_session)
        for _ in range(2):
            allocator.allocate(DocumentType.INVOICE, make_sale())

        failing_sale = make_sale()
        original_commit = db_session.commit
        calls = {"count": 0}

        def flaky_commit():
            calls["count"] += 1
            if calls["count"] == 1:
                raise SQLAlchemyError("disco lleno")
            return original_commit()

        monkeypatch.setattr(db_session, "commit", flaky_commit)
        with pytest.raises(AllocationFailed):
            allocator.allocate(DocumentType.INVOICE, failing_sale)
        monkeypatch.undo()

        assert db_session.query(Comprobante).filter(Comprobante.sale_id == failing_sale.id).count() == 0

        comprobante = allocator.allocate(DocumentType.INVOICE, make_sale())
        assert comprobante.sequence_number == 3

    def test_conflict_is_retried(self, db_session, make_sale):
        allocator = SequenceAllocator(db_session)
        allocator.allocate(DocumentType.RECEIPT, make_sale())

        real_current_max = allocator._current_max
        calls = {"count": 0}

        def stale_current_max(document_type, series):
            calls["count"] += 1
            if calls["count"] == 1:
                return 0  # Lectura vieja: choca con B001-00000001
            return real_current_max(document_type, series)

        allocator._current_max = stale_current_max
        comprobante = allocator.allocate(DocumentType.RECEIPT, make_sale())

        assert calls["count"] == 2
        assert comprobante.sequence_number == 2

    def test_conflict_exhausts_attempts(self, db_session, make_sale):
        allocator = SequenceAllocator(db_session)
        allocator.allocate(DocumentType.RECEIPT, make_sale())
        allocator._current_max = lambda document_type, series: 0

        with pytest.raises(AllocationFailed):
            allocator.allocate(DocumentType.RECEIPT, make_sale())

        assert db_session.query(Comprobante).count() == 1

    def test_same_sale_twice_is_already_emitted(self, db_session, make_sale):
        allocator = SequenceAllocator(db_session)
        sale = make_sale()
        allocator.allocate(DocumentType.RECEIPT, sale)

        with pytest.raises(AlreadyEmitted):
            allocator.allocate(DocumentType.INVOICE, sale)

    def test_parallel_allocations_have_no_gaps_or_duplicates(self, db_session, make_sale):
        workers = 50
        sale_ids = [make_sale().id for _ in range(workers)]
        barrier = threading.Barrier(workers)

        def allocate(sale_id):
            barrier.wait(timeout=30)
            db = SessionLocal()
            try:
                sale = db.get(Sale, sale_id)
                return SequenceAllocator(db).allocate(DocumentType.RECEIPT, sale).sequence_number
            finally:
                db.close()

        with ThreadPoolExecutor(max_workers=workers) as executor:
            numbers = list(executor.map(allocate, sale_ids))

        assert sorted(numbers) == list(range(1, workers + 1))
        assert db_session.query(Comprobante).count() == workers


# ===== TESTS DE MÁQUINA DE ESTADOS =====

class TestStateMachine:
    """Transiciones permitidas entre estados"""

    @pytest.mark.parametrize("current,target,allowed", [
        (ComprobanteStatus.PENDING, ComprobanteStatus.SENT, True),
        (ComprobanteStatus.PENDING, ComprobanteStatus.ACCEPTED, False),
        (ComprobanteStatus.PENDING, ComprobanteStatus.REJECTED, False),
        (ComprobanteStatus.SENT, ComprobanteStatus.SENT, True),
        (ComprobanteStatus.SENT, ComprobanteStatus.ACCEPTED, True),
        (ComprobanteStatus.SENT, ComprobanteStatus.REJECTED, True),
        (ComprobanteStatus.SENT, ComprobanteStatus.PENDING, False),
        (ComprobanteStatus.ACCEPTED, ComprobanteStatus.SENT, False),
        (ComprobanteStatus.REJECTED, ComprobanteStatus.SENT, False),
    ])
    def test_transitions(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_terminal_states_have_no_exits(self):
        assert TERMINAL_STATES == {ComprobanteStatus.ACCEPTED, ComprobanteStatus.REJECTED}
        assert ALLOWED_TRANSITIONS[ComprobanteStatus.ACCEPTED] == frozenset()
        assert ALLOWED_TRANSITIONS[ComprobanteStatus.REJECTED] == frozenset()
        assert OPEN_STATES == {ComprobanteStatus.PENDING, ComprobanteStatus.SENT}

    def test_apply_illegal_transition_raises(self, db_session, make_sale):
        comprobante = _issue(db_session, make_sale(), DocumentType.RECEIPT, status=ComprobanteStatus.ACCEPTED)

        with pytest.raises(InvalidStateTransition):
            apply_transition(comprobante, ComprobanteStatus.SENT)
        assert comprobante.status == ComprobanteStatus.ACCEPTED


# ===== TESTS DE EMISIÓN =====

class TestEmission:
    """Emisión completa contra el gateway falso de SUNAT"""

    def test_invoice_for_sale_42(self, db_session, make_sale, sample_customer, fake_gateway):
        make_sale(total="236.00", customer=sample_customer, sale_id=42)

        comprobante = EmissionService(db_session).emit(42, "FACTURA")

        assert comprobante.series_number == "F001-00000001"
        assert comprobante.status == ComprobanteStatus.ACCEPTED
        assert comprobante.sent_at is not None
        assert comprobante.accepted_at is not None
        assert comprobante.attempts == 1
        assert comprobante.submitting_at is None
        assert comprobante.has_artifact is True

        sent = fake_gateway.calls[0]
        assert sent["serie_numero"] == "F001-00000001"
        assert sent["tipo_comprobante"] == "01"
        assert sent["totales"] == {"igv": "42.48", "total": "236.00"}

        xml = ArtifactStore(db_session).get(comprobante.id)
        assert "<ID>F001-00000001</ID>" in xml

    def test_type_defaults_to_sale_request_then_receipt(self, db_session, make_sale):
        service = EmissionService(db_session)

        requested = service.emit(make_sale(document_type=DocumentType.INVOICE).id)
        default = service.emit(make_sale().id)

        assert requested.series == "F001"
        assert default.series == "B001"

    def test_two_simultaneous_receipts(self, db_session, make_sale):
        sale_ids = [make_sale().id, make_sale().id]
        barrier = threading.Barrier(2)

        def emit(sale_id):
            db = SessionLocal()
            try:
                barrier.wait(timeout=30)
                comprobante = EmissionService(db).emit(sale_id, "BOLETA")
                return comprobante.series_number, comprobante.status
            finally:
                db.close()

        with ThreadPoolExecutor(max_workers=2) as executor:
            results = list(executor.map(emit, sale_ids))

        assert sorted(number for number, _ in results) == ["B001-00000001", "B001-00000002"]
        assert all(status == ComprobanteStatus.ACCEPTED for _, status in results)

    def test_sale_not_found(self, db_session):
        with pytest.raises(SaleNotFound):
            EmissionService(db_session).emit(999)

    def test_already_emitted(self, db_session, make_sale):
        sale = make_sale()
        service = EmissionService(db_session)
        first = service.emit(sale.id)

        with pytest.raises(AlreadyEmitted) as exc_info:
            service.emit(sale.id)

        assert exc_info.value.context["comprobante_id"] == first.id
        assert db_session.query(Comprobante).count() == 1

    def test_invalid_type_does_not_consume_number(self, db_session, make_sale):
        service = EmissionService(db_session)
        with pytest.raises(InvalidDocumentType):
            service.emit(make_sale().id, "NOTA")

        assert service.emit(make_sale().id, "FACTURA").sequence_number == 1

    def test_rejected_is_final(self, db_session, make_sale, fake_gateway):
        fake_gateway.configure(REJECT, "2017 - El número de documento de identidad del receptor debe ser RUC")
        sale = make_sale()

        with pytest.raises(AuthorityRejected) as exc_info:
            EmissionService(db_session).emit(sale.id, "FACTURA")

        assert exc_info.value.context["series_number"] == "F001-00000001"
        comprobante = db_session.query(Comprobante).filter(Comprobante.sale_id == sale.id).one()
        assert comprobante.status == ComprobanteStatus.REJECTED
        assert comprobante.rejection_reason.startswith("2017")
        assert comprobante.has_artifact is False

    def test_unreachable_authority_leaves_sent(self, db_session, make_sale, fake_gateway):
        fake_gateway.configure(UNREACHABLE)
        sale = make_sale()

        with pytest.raises(AuthorityUnreachable) as exc_info:
            EmissionService(db_session).emit(sale.id)

        assert exc_info.value.retryable is True
        db_session.expire_all()
        comprobante = db_session.query(Comprobante).filter(Comprobante.sale_id == sale.id).one()
        assert comprobante.status == ComprobanteStatus.SENT
        assert comprobante.attempts == 1
        assert comprobante.last_error
        assert comprobante.submitting_at is None

    def test_pending_answer_leaves_sent(self, db_session, make_sale, fake_gateway):
        fake_gateway.configure(PENDING)
        comprobante = EmissionService(db_session).emit(make_sale().id)

        assert comprobante.status == ComprobanteStatus.SENT
        assert comprobante.tracking_id.startswith("fake-")
        assert comprobante.last_error is None

    def test_accepted_without_xml_leaves_sent(self, db_session, make_sale):
        class NoXmlGateway(FakeSunatGateway):
            def submit(self, document):
                return AuthorityResponse(accepted=True, tracking_id="T-1")

        set_gateway(NoXmlGateway())
        comprobante = EmissionService(db_session).emit(make_sale().id)

        assert comprobante.status == ComprobanteStatus.SENT
        assert "sin devolver el XML" in comprobante.last_error
        assert comprobante.has_artifact is False

    def test_unsaved_authority_answer_is_reported(self, db_session, make_sale, monkeypatch):
        sale = make_sale()
        original_commit = db_session.commit
        calls = {"count": 0}

        def flaky_commit():
            calls["count"] += 1
            # reserva, SENT, respuesta de SUNAT
            if calls["count"] == 3:
                raise SQLAlchemyError("conexión perdida")
            return original_commit()

        monkeypatch.setattr(db_session, "commit", flaky_commit)
        with pytest.raises(OutcomeNotPersisted) as exc_info:
            EmissionService(db_session).emit(sale.id, "FACTURA")
        monkeypatch.undo()

        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 503
        assert exc_info.value.context["series_number"] == "F001-00000001"

        db_session.expire_all()
        comprobante = db_session.query(Comprobante).filter(Comprobante.sale_id == sale.id).one()
        assert comprobante.status == ComprobanteStatus.SENT
        assert comprobante.submitting_at is None
        assert comprobante.has_artifact is False

        resent = EmissionService(db_session).resend(comprobante.id)
        assert resent.status == ComprobanteStatus.ACCEPTED
        assert resent.series_number == "F001-00000001"
        assert resent.attempts == 2
        assert resent.has_artifact is True

    def test_igv_is_eighteen_percent_of_total(self):
        assert compute_igv(Decimal("118.00")) == Decimal("21.24")
        assert compute_igv(Decimal("10.05")) == Decimal("1.81")
        assert compute_igv(None) == Decimal("0.00")

    def test_document_keeps_issue_date_of_reservation(self, db_session, make_sale):
        comprobante = SequenceAllocator(db_session).allocate(DocumentType.RECEIPT, make_sale())
        comprobante.created_at = datetime(2026, 3, 11, 3, 30, tzinfo=UTC)
        db_session.commit()

        # 22:30 del día anterior en Lima
        assert build_document(comprobante)["fecha_emision"] == "2026-03-10"


# ===== TESTS DE REENVÍO =====

class TestResend:
    """Reenvío de comprobantes SENT con el mismo número"""

    def test_resend_keeps_number(self, db_session, make_sale, fake_gateway):
        fake_gateway.configure(UNREACHABLE)
        sale = make_sale()
        service = EmissionService(db_session)
        with pytest.raises(AuthorityUnreachable):
            service.emit(sale.id, "FACTURA")

        comprobante = db_session.query(Comprobante).filter(Comprobante.sale_id == sale.id).one()
        fake_gateway.configure(ACCEPT)
        resent = service.resend(comprobante.id)

        assert resent.id == comprobante.id
        assert resent.series_number == "F001-00000001"
        assert resent.status == ComprobanteStatus.ACCEPTED
        assert resent.attempts == 2
        assert resent.last_error is None
        assert [call["serie_numero"] for call in fake_gateway.calls] == ["F001-00000001"] * 2

    @pytest.mark.parametrize("status", [
        ComprobanteStatus.ACCEPTED, ComprobanteStatus.REJECTED, ComprobanteStatus.PENDING
    ])
    def test_resend_only_from_sent(self, db_session, make_sale, fake_gateway, status):
        comprobante = _issue(db_session, make_sale(), DocumentType.RECEIPT, status=status)

        with pytest.raises(InvalidStateTransition):
            EmissionService(db_session).resend(comprobante.id)
        assert fake_gateway.calls == []

    def test_resend_final_state_names_it(self, db_session, make_sale):
        comprobante = _issue(db_session, make_sale(), DocumentType.INVOICE, status=ComprobanteStatus.ACCEPTED)

        with pytest.raises(InvalidStateTransition) as exc_info:
            EmissionService(db_session).resend(comprobante.id)
        assert "estado final ACCEPTED" in exc_info.value.message
        assert exc_info.value.context["status"] == "ACCEPTED"

    def test_resend_unknown(self, db_session):
        with pytest.raises(ComprobanteNotFound):
            EmissionService(db_session).resend(12345)

    def test_live_lease_blocks_resend(self, db_session, make_sale):
        comprobante = _issue(db_session, make_sale(), DocumentType.RECEIPT)
        comprobante.submitting_at = utcnow()
        db_session.commit()

        with pytest.raises(SubmissionInProgress):
            EmissionService(db_session).resend(comprobante.id)

    def test_expired_lease_is_taken_over(self, db_session, make_sale):
        comprobante = _issue(db_session, make_sale(), DocumentType.RECEIPT)
        comprobante.submitting_at = utcnow() - timedelta(hours=1)
        db_session.commit()

        resent = EmissionService(db_session).resend(comprobante.id)
        assert resent.status == ComprobanteStatus.ACCEPTED

    def test_concurrent_resend_reaches_authority_once(self, db_session, make_sale):
        class BlockingGateway(FakeSunatGateway):
            def __init__(self):
                super().__init__()
                self.entered = threading.Event()
                self.release = threading.Event()

            def submit(self, document):
                self.entered.set()
                self.release.wait(timeout=10)
                return super().submit(document)

        gateway = BlockingGateway()
        set_gateway(gateway)
        comprobante = _issue(db_session, make_sale(), DocumentType.INVOICE)
        comprobante_id = comprobante.id

        def resend_in_background():
            db = SessionLocal()
            try:
                return EmissionService(db).resend(comprobante_id).status
            finally:
                db.close()

        with ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(resend_in_background)
            assert gateway.entered.wait(timeout=10)

            with pytest.raises(SubmissionInProgress):
                EmissionService(db_session).resend(comprobante_id)

            gateway.release.set()
            assert future.result(timeout=30) == ComprobanteStatus.ACCEPTED

        assert len(gateway.calls) == 1


# ===== TESTS DE XML =====

class TestArtifactStore:
    """XML firmado disponible solo para comprobantes aceptados"""

    def test_get_before_accepted(self, db_session, make_sale):
        comprobante = _issue(db_session, make_sale(), DocumentType.RECEIPT)

        with pytest.raises(ArtifactNotReady):
            ArtifactStore(db_session).get(comprobante.id)

    def test_put_requires_accepted(self, db_session, make_sale):
        comprobante = _issue(db_session, make_sale(), DocumentType.RECEIPT)

        with pytest.raises(ArtifactNotReady):
            ArtifactStore(db_session).put(comprobante, "<Invoice/>")

    def test_get_unknown(self, db_session):
        with pytest.raises(ComprobanteNotFound):
            ArtifactStore(db_session).get(999)

    def test_put_replaces_and_digests(self, db_session, make_sale):
        comprobante = _issue(db_session, make_sale(), DocumentType.INVOICE, status=ComprobanteStatus.ACCEPTED)
        store = ArtifactStore(db_session)

        store.put(comprobante, "<Invoice>v1</Invoice>")
        db_session.commit()
        artifact = store.put(comprobante, "<Invoice>v2</Invoice>")
        db_session.commit()

        assert store.get(comprobante.id) == "<Invoice>v2</Invoice>"
        assert len(artifact.digest) == 64


# ===== TESTS DEL LEDGER =====

class TestLedger:
    """Listado con filtros combinables y paginación"""

    @pytest.fixture
    def ledger_data(self, db_session, make_sale, sample_customer):
        other = Customer(name="Bodega 100% Natural", document_type="DNI", document_number="45678912")
        db_session.add(other)
        db_session.commit()

        base = datetime(2026, 3, 10, 15, 0, tzinfo=UTC)
        return {
            "f1": _issue(db_session, make_sale(customer=sample_customer), DocumentType.INVOICE,
                         ComprobanteStatus.ACCEPTED, base),
            "f2": _issue(db_session, make_sale(customer=sample_customer), DocumentType.INVOICE,
                         ComprobanteStatus.REJECTED, base + timedelta(days=1)),
            "b1": _issue(db_session, make_sale(customer=other), DocumentType.RECEIPT,
                         ComprobanteStatus.ACCEPTED, base),
            "b2": _issue(db_session, make_sale(), DocumentType.RECEIPT,
                         ComprobanteStatus.SENT, base + timedelta(hours=12)),
            "b3": _issue(db_session, make_sale(), DocumentType.RECEIPT,
                         ComprobanteStatus.PENDING, None),
        }

    def _list(self, db, page=1, page_size=10, **filters):
        return LedgerQueryEngine(db).list(LedgerFilters(**filters), page, page_size)

    def test_no_filters(self, db_session, ledger_data):
        items, total = self._list(db_session)
        assert total == 5
        assert len(items) == 5

    def test_order_sent_at_desc_then_number_asc(self, db_session, ledger_data):
        items, _ = self._list(db_session)
        assert _numbers(items) == [
            "F001-00000002",  # 11/03 15:00
            "B001-00000002",  # 11/03 03:00
            "F001-00000001",  # 10/03 15:00, mismo correlativo: desempata el id
            "B001-00000001",
            "B001-00000003",  # sin envío
        ]

    def test_filters_are_conjunctive(self, db_session, ledger_data):
        items, total = self._list(db_session, type=DocumentType.INVOICE, status=ComprobanteStatus.ACCEPTED)
        assert total == 1
        assert _numbers(items) == ["F001-00000001"]

    def test_total_matches_all_pages(self, db_session, ledger_data):
        first, total = self._list(db_session, page=1, page_size=2, type=DocumentType.RECEIPT)
        second, total_second = self._list(db_session, page=2, page_size=2, type=DocumentType.RECEIPT)

        assert total == total_second == 3
        assert len(first) == 2 and len(second) == 1
        assert set(_numbers(first)).isdisjoint(_numbers(second))

    def test_page_out_of_range_keeps_total(self, db_session, ledger_data):
        items, total = self._list(db_session, page=2, page_size=10)
        assert items == []
        assert total == 5

    def test_second_page_empty_for_ten_matches(self, db_session, make_sale):
        acme = Customer(name="ACME Perú S.A.C.", document_type="RUC", document_number="20601234567")
        db_session.add(acme)
        db_session.commit()
        for _ in range(10):
            _issue(db_session, make_sale(customer=acme), DocumentType.INVOICE, sent_at=utcnow())
        _issue(db_session, make_sale(customer=acme), DocumentType.RECEIPT, sent_at=utcnow())

        items, total = self._list(db_session, page=2, page_size=10, type=DocumentType.INVOICE, search="acme")

        assert items == []
        assert total == 10

    def test_empty_result(self, db_session, ledger_data):
        items, total = self._list(db_session, search="no existe")
        assert (items, total) == ([], 0)

    def test_search_by_customer_name(self, db_session, ledger_data):
        items, total = self._list(db_session, search="andina")
        assert total == 2
        assert set(_numbers(items)) == {"F001-00000001", "F001-00000002"}

    def test_search_by_series_number(self, db_session, ledger_data):
        items, total = self._list(db_session, search="b001-00000002")
        assert total == 1
        assert _numbers(items) == ["B001-00000002"]

    def test_search_escapes_wildcards(self, db_session, ledger_data):
        items, total = self._list(db_session, search="100%")
        assert total == 1
        assert items[0].customer_name == "Bodega 100% Natural"

        _, total = self._list(db_session, search="_")
        assert total == 0

    def test_date_range_uses_local_days(self, db_session, ledger_data):
        # B001-00000002 se envió el 11/03 a las 03:00 UTC, 10/03 22:00 en Lima
        items, total = self._list(db_session, date_from=date(2026, 3, 10), date_to=date(2026, 3, 10))
        assert total == 3
        assert "B001-00000002" in _numbers(items)

        items, total = self._list(db_session, date_from=date(2026, 3, 11))
        assert _numbers(items) == ["F001-00000002"]

    def test_date_filter_excludes_unsent(self, db_session, ledger_data):
        _, total = self._list(db_session, date_to=date(2026, 12, 31))
        assert total == 4

    def test_page_size_is_clamped(self, db_session, ledger_data):
        items, total = LedgerQueryEngine(db_session).list(LedgerFilters(), page=0, page_size=100000)
        assert total == 5
        assert len(items) == 5

    def test_get_detail(self, db_session, ledger_data, sample_customer):
        comprobante, sale, customer = LedgerQueryEngine(db_session).get(ledger_data["f1"].id)
        assert comprobante.series_number == "F001-00000001"
        assert sale.id == comprobante.sale_id
        assert customer.id == sample_customer.id

    def test_get_unknown(self, db_session):
        with pytest.raises(ComprobanteNotFound):
            LedgerQueryEngine(db_session).get(404)


# ===== TESTS DE API =====

class TestComprobantesAPI:
    """Endpoints HTTP y formato de respuesta"""

    def test_emit_invoice(self, client, make_sale, sample_customer):
        sale = make_sale(total="236.00", customer=sample_customer, sale_id=42)

        response = client.post(f"{API}/sales/{sale.id}/emit", json={"type": "FACTURA"})

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["comprobante"]["series_number"] == "F001-00000001"
        assert body["comprobante"]["status"] == "ACCEPTED"
        assert body["comprobante"]["igv"] == "42.48"
        assert body["comprobante"]["has_artifact"] is True

    def test_emit_without_body_defaults_to_receipt(self, client, make_sale):
        response = client.post(f"{API}/sales/{make_sale().id}/emit")
        assert response.status_code == 201
        assert response.json()["comprobante"]["series"] == "B001"

    def test_emit_invalid_type(self, client, make_sale):
        response = client.post(f"{API}/sales/{make_sale().id}/emit", json={"type": "TICKET"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["kind"] == "invalid_document_type"
        assert body["error"]

    def test_emit_unknown_sale(self, client):
        response = client.post(f"{API}/sales/777/emit", json={"type": "BOLETA"})
        assert response.status_code == 404
        assert response.json()["kind"] == "sale_not_found"

    def test_emit_twice(self, client, make_sale):
        sale = make_sale()
        client.post(f"{API}/sales/{sale.id}/emit")
        response = client.post(f"{API}/sales/{sale.id}/emit")

        assert response.status_code == 409
        assert response.json()["kind"] == "already_emitted"
        assert response.json()["series_number"] == "B001-00000001"

    def test_emit_authority_unreachable(self, client, make_sale, fake_gateway):
        fake_gateway.configure(UNREACHABLE)
        response = client.post(f"{API}/sales/{make_sale().id}/emit")

        assert response.status_code == 503
        body = response.json()
        assert body["retryable"] is True
        assert body["series_number"] == "B001-00000001"

    def test_emit_rejected(self, client, make_sale, fake_gateway):
        fake_gateway.configure(REJECT)
        response = client.post(f"{API}/sales/{make_sale().id}/emit", json={"type": "FACTURA"})

        assert response.status_code == 422
        assert response.json()["kind"] == "authority_rejected"
        assert response.json()["retryable"] is False

    def test_emit_answer_not_saved(self, client, make_sale, monkeypatch):
        original_commit = Session.commit

        def commit(session):
            if any(isinstance(obj, ComprobanteArtifact) for obj in session.new):
                raise SQLAlchemyError("conexión perdida")
            return original_commit(session)

        monkeypatch.setattr(Session, "commit", commit)
        response = client.post(f"{API}/sales/{make_sale().id}/emit")
        monkeypatch.undo()

        assert response.status_code == 503
        body = response.json()
        assert body["kind"] == "outcome_not_persisted"
        assert body["retryable"] is True

        resent = client.post(f"{API}/{body['comprobante_id']}/resend")
        assert resent.status_code == 200
        assert resent.json()["comprobante"]["status"] == "ACCEPTED"

    def test_list_with_empty_page(self, client, db_session, make_sale):
        for _ in range(3):
            _issue(db_session, make_sale(), DocumentType.RECEIPT, sent_at=utcnow())

        response = client.get(API, params={"page": 2, "page_size": 10})

        assert response.status_code == 200
        body = response.json()
        assert body == {"success": True, "total": 3, "page": 2, "page_size": 10, "comprobantes": []}

    def test_list_filters(self, client, db_session, make_sale):
        _issue(db_session, make_sale(), DocumentType.RECEIPT, sent_at=utcnow())
        _issue(db_session, make_sale(), DocumentType.INVOICE, status=ComprobanteStatus.ACCEPTED,
               sent_at=utcnow())

        response = client.get(API, params={"type": "factura", "status": "ACCEPTED"})

        body = response.json()
        assert body["total"] == 1
        assert body["comprobantes"][0]["series_number"] == "F001-00000001"

    def test_list_invalid_type(self, client):
        response = client.get(API, params={"type": "NOTA"})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_list_invalid_page(self, client):
        response = client.get(API, params={"page": 0})
        assert response.status_code == 422
        assert response.json()["kind"] == "validation_error"

    def test_detail(self, client, make_sale, sample_customer):
        sale = make_sale(customer=sample_customer)
        emitted = client.post(f"{API}/sales/{sale.id}/emit", json={"type": "FACTURA"}).json()

        response = client.get(f"{API}/{emitted['comprobante']['id']}")

        assert response.status_code == 200
        detail = response.json()["comprobante"]
        assert detail["current_customer_name"] == "Distribuidora Andina S.A.C."
        assert detail["sale_total"] == "118.00"

    def test_detail_not_found(self, client):
        response = client.get(f"{API}/999")
        assert response.status_code == 404
        assert response.json()["kind"] == "comprobante_not_found"

    def test_download_xml(self, client, make_sale):
        emitted = client.post(f"{API}/sales/{make_sale().id}/emit").json()
        comprobante_id = emitted["comprobante"]["id"]

        response = client.get(f"{API}/{comprobante_id}/xml")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert response.headers["content-disposition"] == f'attachment; filename="comprobante-{comprobante_id}.xml"'
        assert "<ID>B001-00000001</ID>" in response.text

    def test_download_xml_not_ready(self, client, make_sale, fake_gateway):
        fake_gateway.configure(PENDING)
        emitted = client.post(f"{API}/sales/{make_sale().id}/emit").json()

        response = client.get(f"{API}/{emitted['comprobante']['id']}/xml")

        assert response.status_code == 409
        assert response.json()["kind"] == "artifact_not_ready"

    def test_resend(self, client, make_sale, fake_gateway):
        fake_gateway.configure(PENDING)
        emitted = client.post(f"{API}/sales/{make_sale().id}/emit").json()["comprobante"]

        fake_gateway.configure(ACCEPT)
        response = client.post(f"{API}/{emitted['id']}/resend")

        assert response.status_code == 200
        body = response.json()["comprobante"]
        assert body["series_number"] == emitted["series_number"]
        assert body["status"] == "ACCEPTED"
        assert body["attempts"] == 2

    def test_resend_accepted(self, client, make_sale):
        emitted = client.post(f"{API}/sales/{make_sale().id}/emit").json()["comprobante"]

        response = client.post(f"{API}/{emitted['id']}/resend")

        assert response.status_code == 409
        assert response.json()["kind"] == "invalid_state_transition"

    def test_next_number(self, client, make_sale, sample_customer):
        client.post(f"{API}/sales/{make_sale().id}/emit", json={"type": "FACTURA"})

        first = client.post(f"{API}/next-number", json={"type": "FACTURA", "customer_id": sample_customer.id})
        second = client.post(f"{API}/next-number", json={"type": "FACTURA"})

        assert first.status_code == 200
        assert first.json()["series_number"] == "F001-00000002"
        assert second.json()["sequence_number"] == 2

    def test_next_number_unknown_customer(self, client):
        response = client.post(f"{API}/next-number", json={"type": "BOLETA", "customer_id": 999})
        assert response.status_code == 404
        assert response.json()["kind"] == "customer_not_found"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert "x-request-id" in response.headers


# ===== TESTS DE TAREAS =====

class TestTasks:
    """Barrido periódico y reenvío en segundo plano"""

    def test_sweep_recovers_stale(self, db_session, make_sale):
        old = utcnow() - timedelta(hours=1)
        stale_sent = _issue(db_session, make_sale(), DocumentType.RECEIPT, sent_at=old)
        orphan = _issue(db_session, make_sale(), DocumentType.INVOICE, status=ComprobanteStatus.PENDING)
        orphan.created_at = old
        fresh = _issue(db_session, make_sale(), DocumentType.RECEIPT, sent_at=utcnow())
        db_session.commit()

        summary = sweep_stale_comprobantes()

        assert summary["found"] == 2
        assert summary["accepted"] == 2
        db_session.expire_all()
        assert db_session.get(Comprobante, stale_sent.id).status == ComprobanteStatus.ACCEPTED
        assert db_session.get(Comprobante, orphan.id).status == ComprobanteStatus.ACCEPTED
        assert db_session.get(Comprobante, fresh.id).status == ComprobanteStatus.SENT

    def test_sweep_skips_live_lease(self, db_session, make_sale):
        comprobante = _issue(db_session, make_sale(), DocumentType.RECEIPT, sent_at=utcnow() - timedelta(hours=1))
        comprobante.submitting_at = utcnow()
        db_session.commit()

        assert sweep_stale_comprobantes()["found"] == 0

    def test_sweep_counts_unreachable(self, db_session, make_sale, fake_gateway):
        fake_gateway.configure(UNREACHABLE)
        _issue(db_session, make_sale(), DocumentType.RECEIPT, sent_at=utcnow() - timedelta(hours=1))

        summary = sweep_stale_comprobantes()
        assert summary["still_sent"] == 1

    def test_resend_task(self, db_session, make_sale):
        comprobante = _issue(db_session, make_sale(), DocumentType.INVOICE)

        result = resend_comprobante_task(comprobante.id)

        assert result["status"] == "ACCEPTED"
        assert result["series_number"] == "F001-00000001"

    def test_resend_task_on_final_state(self, db_session, make_sale):
        comprobante = _issue(db_session, make_sale(), DocumentType.INVOICE, status=ComprobanteStatus.REJECTED)

        result = resend_comprobante_task(comprobante.id)
        assert result["error"] == "invalid_state_transition"

    def test_sweep_stops_after_max_attempts(self, db_session, make_sale, monkeypatch):
        monkeypatch.setattr(settings, "MAX_SUBMISSION_ATTEMPTS", 3)
        old = utcnow() - timedelta(hours=1)
        exhausted = _issue(db_session, make_sale(), DocumentType.RECEIPT, sent_at=old)
        exhausted.attempts = 3
        retryable = _issue(db_session, make_sale(), DocumentType.RECEIPT, sent_at=old)
        retryable.attempts = 2
        db_session.commit()

        assert EmissionService(db_session).find_stale() == [retryable.id]
        assert sweep_stale_comprobantes()["found"] == 1

        # El reenvío manual sigue disponible
        resent = EmissionService(db_session).resend(exhausted.id)
        assert resent.status == ComprobanteStatus.ACCEPTED
        assert resent.attempts == 4
