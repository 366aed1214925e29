"""SUNAT gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- FakeSunatGateway for development and testing
- HttpSunatGateway for production (SUNAT_GATEWAY=http)
"""

from typing import Optional

from app.core.config import settings
from app.modules.sunat.client import HttpSunatGateway
from app.modules.sunat.fake import FakeSunatGateway
from app.modules.sunat.port import AuthorityResponse, SunatGateway

_current_gateway: Optional[SunatGateway] = None


def get_gateway() -> SunatGateway:
    """Return the current SUNAT gateway, built from settings on first use."""
    global _current_gateway
    if _current_gateway is None:
        if settings.SUNAT_GATEWAY == "http":
            _current_gateway = HttpSunatGateway()
        else:
            _current_gateway = FakeSunatGateway()
    return _current_gateway


def set_gateway(gateway: SunatGateway) -> None:
    """Override the active gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    global _current_gateway
    _current_gateway = None


__all__ = [
    "AuthorityResponse", "SunatGateway", "HttpSunatGateway", "FakeSunatGateway",
    "get_gateway", "set_gateway", "reset_gateway",
]
