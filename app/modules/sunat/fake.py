"""Configurable fake SUNAT gateway for development and testing.

Simula la validación de SUNAT sin llamadas externas. El resultado se
configura en tiempo de ejecución (aceptar, rechazar, dejar pendiente o
fallar por red), lo que permite probar cada rama de la emisión.
"""

from typing import Any, Dict, List
from uuid import uuid4

from app.common.exceptions import AuthorityUnreachable
from app.modules.sunat.port import AuthorityResponse, SunatGateway

ACCEPT = "accept"
REJECT = "reject"
PENDING = "pending"
UNREACHABLE = "unreachable"

OUTCOMES = (ACCEPT, REJECT, PENDING, UNREACHABLE)


class FakeSunatGateway(SunatGateway):
    """Configurable fake SUNAT gateway."""

    def __init__(self) -> None:
        self.outcome: str = ACCEPT
        self.rejection_reason: str = "2800 - El dato ingresado en el tipo de documento de identidad del receptor no esta permitido"
        self.calls: List[Dict[str, Any]] = []

    def configure(self, outcome: str, rejection_reason: str = None) -> None:
        if outcome not in OUTCOMES:
            raise ValueError(f"Resultado desconocido: {outcome}")
        self.outcome = outcome
        if rejection_reason:
            self.rejection_reason = rejection_reason

    def submit(self, document: Dict[str, Any]) -> AuthorityResponse:
        self.calls.append(document)
        ticket = f"fake-{uuid4().hex[:12]}"

        if self.outcome == UNREACHABLE:
            raise AuthorityUnreachable("Tiempo de espera agotado con SUNAT (simulado)")

        if self.outcome == REJECT:
            return AuthorityResponse(
                accepted=False,
                rejected=True,
                tracking_id=ticket,
                description=self.rejection_reason,
            )

        if self.outcome == PENDING:
            return AuthorityResponse(accepted=False, tracking_id=ticket, description="En proceso")

        return AuthorityResponse(
            accepted=True,
            artifact_xml=render_fake_xml(document),
            tracking_id=ticket,
            description=f"La {document.get('tipo_nombre', 'Comprobante')} {document.get('serie_numero')} ha sido aceptada",
        )


def render_fake_xml(document: Dict[str, Any]) -> str:
    cliente = document.get("cliente", {})
    totales = document.get("totales", {})
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<Invoice xmlns="urn:oasis:names:specification:ubl:schema:xsd:Invoice-2">\n'
        f'  <ID>{document.get("serie_numero")}</ID>\n'
        f'  <InvoiceTypeCode>{document.get("tipo_comprobante")}</InvoiceTypeCode>\n'
        f'  <IssueDate>{document.get("fecha_emision")}</IssueDate>\n'
        f'  <DocumentCurrencyCode>{document.get("moneda")}</DocumentCurrencyCode>\n'
        f'  <CustomerID schemeID="{cliente.get("tipo_documento")}">{cliente.get("numero_documento")}</CustomerID>\n'
        f'  <TaxAmount>{totales.get("igv")}</TaxAmount>\n'
        f'  <PayableAmount>{totales.get("total")}</PayableAmount>\n'
        '  <Signature>FAKE</Signature>\n'
        '</Invoice>\n'
    )
