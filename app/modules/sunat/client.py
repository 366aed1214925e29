"""
Cliente HTTP hacia el servicio de validación de SUNAT.

Todas las llamadas tienen un timeout acotado (SUNAT_TIMEOUT_SECONDS). Un
timeout, un error de red o una respuesta 5xx se reportan como
AuthorityUnreachable para que el comprobante quede SENT y se pueda reenviar.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from app.common.exceptions import AuthorityUnreachable
from app.core.config import settings
from app.modules.sunat.port import AuthorityResponse, SunatGateway

logger = logging.getLogger(__name__)


class HttpSunatGateway(SunatGateway):
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or settings.SUNAT_API_URL).rstrip("/")
        self.token = token if token is not None else settings.SUNAT_API_TOKEN
        self.timeout = timeout or settings.SUNAT_TIMEOUT_SECONDS
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def submit(self, document: Dict[str, Any]) -> AuthorityResponse:
        serie_numero = document.get("serie_numero")
        logger.info(f"Enviando {serie_numero} a SUNAT ({self.base_url})")

        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self._headers(),
                transport=self.transport,
            ) as client:
                response = client.post("/comprobantes", json=document)
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout enviando {serie_numero} a SUNAT: {e}")
            raise AuthorityUnreachable(f"Tiempo de espera agotado con SUNAT ({self.timeout}s)") from e
        except httpx.TransportError as e:
            logger.warning(f"Error de red enviando {serie_numero} a SUNAT: {e}")
            raise AuthorityUnreachable(f"No se pudo conectar con SUNAT: {e}") from e

        if response.status_code >= 500:
            logger.warning(f"SUNAT respondió {response.status_code} para {serie_numero}: {response.text[:500]}")
            raise AuthorityUnreachable(f"SUNAT respondió {response.status_code}")

        if response.status_code >= 400:
            logger.error(f"SUNAT respondió {response.status_code} para {serie_numero}: {response.text[:500]}")
            raise AuthorityUnreachable(f"SUNAT respondió {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            logger.error(f"Respuesta no JSON de SUNAT para {serie_numero}: {response.text[:500]}")
            raise AuthorityUnreachable("Respuesta inválida de SUNAT") from e

        return parse_response(body)


def parse_response(body: Dict[str, Any]) -> AuthorityResponse:
    accepted = bool(body.get("accepted"))
    rejected = bool(body.get("rejected")) and not accepted
    return AuthorityResponse(
        accepted=accepted,
        rejected=rejected,
        artifact_xml=body.get("xml"),
        tracking_id=body.get("ticket"),
        description=body.get("description"),
    )
