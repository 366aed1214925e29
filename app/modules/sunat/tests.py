"""
Tests para los gateways de SUNAT

- HttpSunatGateway contra un transporte simulado de httpx
- FakeSunatGateway configurable
- Selección del gateway según configuración
"""

import httpx
import pytest

from app.common.exceptions import AuthorityUnreachable
from app.modules.sunat import get_gateway, reset_gateway, set_gateway
from app.modules.sunat.client import HttpSunatGateway, parse_response
from app.modules.sunat.fake import ACCEPT, PENDING, REJECT, UNREACHABLE, FakeSunatGateway


DOCUMENT = {
    "tipo_comprobante": "01",
    "tipo_nombre": "FACTURA",
    "serie_numero": "F001-00000001",
    "fecha_emision": "2026-03-10",
    "moneda": "PEN",
    "cliente": {"tipo_documento": "RUC", "numero_documento": "20512345678", "nombre": "Distribuidora Andina S.A.C."},
    "totales": {"igv": "21.24", "total": "118.00"},
}


def _gateway(handler, token="secreto"):
    return HttpSunatGateway(
        base_url="http://sunat.test/",
        token=token,
        timeout=2.0,
        transport=httpx.MockTransport(handler),
    )


class TestHttpSunatGateway:
    """Cliente HTTP con timeout acotado"""

    def test_accepted(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={
                "accepted": True,
                "xml": "<Invoice/>",
                "ticket": "T-123",
                "description": "La Factura numero F001-00000001, ha sido aceptada",
            })

        response = _gateway(handler).submit(DOCUMENT)

        assert seen["url"] == "http://sunat.test/comprobantes"
        assert seen["auth"] == "Bearer secreto"
        assert response.accepted is True
        assert response.artifact_xml == "<Invoice/>"
        assert response.tracking_id == "T-123"
        assert response.pending is False

    def test_rejected(self):
        def handler(request):
            return httpx.Response(200, json={"accepted": False, "rejected": True, "description": "2800 - Error"})

        response = _gateway(handler).submit(DOCUMENT)

        assert response.rejected is True
        assert response.description == "2800 - Error"

    def test_without_token_sends_no_authorization(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"accepted": False})

        response = _gateway(handler, token="").submit(DOCUMENT)

        assert seen["auth"] is None
        assert response.pending is True

    def test_timeout_is_unreachable(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(AuthorityUnreachable) as exc_info:
            _gateway(handler).submit(DOCUMENT)
        assert exc_info.value.retryable is True

    def test_connection_error_is_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AuthorityUnreachable):
            _gateway(handler).submit(DOCUMENT)

    @pytest.mark.parametrize("status_code", [500, 502, 503, 400, 401])
    def test_error_status_is_unreachable(self, status_code):
        def handler(request):
            return httpx.Response(status_code, text="error")

        with pytest.raises(AuthorityUnreachable):
            _gateway(handler).submit(DOCUMENT)

    def test_invalid_body_is_unreachable(self):
        def handler(request):
            return httpx.Response(200, text="<html>mantenimiento</html>")

        with pytest.raises(AuthorityUnreachable):
            _gateway(handler).submit(DOCUMENT)

    def test_parse_response_accepted_wins(self):
        response = parse_response({"accepted": True, "rejected": True, "xml": "<x/>"})
        assert response.accepted is True
        assert response.rejected is False


class TestFakeSunatGateway:
    """Gateway falso para desarrollo y tests"""

    def test_accept_returns_signed_xml(self):
        gateway = FakeSunatGateway()
        response = gateway.submit(DOCUMENT)

        assert response.accepted is True
        assert "<ID>F001-00000001</ID>" in response.artifact_xml
        assert "<TaxAmount>21.24</TaxAmount>" in response.artifact_xml
        assert gateway.calls == [DOCUMENT]

    def test_reject(self):
        gateway = FakeSunatGateway()
        gateway.configure(REJECT, "3000 - Motivo")

        response = gateway.submit(DOCUMENT)
        assert response.rejected is True
        assert response.description == "3000 - Motivo"

    def test_pending(self):
        gateway = FakeSunatGateway()
        gateway.configure(PENDING)
        assert gateway.submit(DOCUMENT).pending is True

    def test_unreachable(self):
        gateway = FakeSunatGateway()
        gateway.configure(UNREACHABLE)

        with pytest.raises(AuthorityUnreachable):
            gateway.submit(DOCUMENT)
        assert len(gateway.calls) == 1

    def test_unknown_outcome(self):
        with pytest.raises(ValueError):
            FakeSunatGateway().configure("maybe")

    def test_configure_back_to_accept(self):
        gateway = FakeSunatGateway()
        gateway.configure(REJECT)
        gateway.configure(ACCEPT)
        assert gateway.submit(DOCUMENT).accepted is True


class TestGatewayFactory:
    """Selección del gateway activo"""

    def test_default_is_fake(self):
        reset_gateway()
        gateway = get_gateway()

        assert isinstance(gateway, FakeSunatGateway)
        assert get_gateway() is gateway

    def test_set_gateway_overrides(self):
        gateway = HttpSunatGateway(base_url="http://sunat.test")
        set_gateway(gateway)
        assert get_gateway() is gateway
