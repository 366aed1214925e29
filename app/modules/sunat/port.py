"""SUNAT gateway port (abstract interface).

Contrato que cumplen todos los adaptadores hacia el servicio de validación
de SUNAT. Permite cambiar entre FakeSunatGateway (desarrollo/tests) y
HttpSunatGateway (producción) sin tocar la lógica de emisión.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class AuthorityResponse:
    """Resultado de un envío a SUNAT.

    Ni `accepted` ni `rejected`: SUNAT recibió el documento pero aún no lo
    resolvió (el comprobante queda SENT y se puede reenviar).
    """

    accepted: bool
    rejected: bool = False
    artifact_xml: Optional[str] = None
    tracking_id: Optional[str] = None
    description: Optional[str] = None

    @property
    def pending(self) -> bool:
        return not self.accepted and not self.rejected


class SunatGateway(ABC):
    """Abstract SUNAT gateway interface."""

    @abstractmethod
    def submit(self, document: Dict[str, Any]) -> AuthorityResponse:
        """Envía el comprobante.

        Raises:
            AuthorityUnreachable: timeout, error de transporte o respuesta
                inutilizable. El envío se puede reintentar.
        """
        ...
