"""
Máquina de estados de emisión.

    PENDING -> SENT -> ACCEPTED
                    +-> REJECTED
    SENT -> SENT (reenvío con el mismo correlativo)

Cualquier otra transición se rechaza con InvalidStateTransition.
"""
from typing import Dict, FrozenSet

from app.common.exceptions import InvalidStateTransition
from app.modules.comprobantes.models import Comprobante, ComprobanteStatus

ALLOWED_TRANSITIONS: Dict[ComprobanteStatus, FrozenSet[ComprobanteStatus]] = {
    ComprobanteStatus.PENDING: frozenset({ComprobanteStatus.SENT}),
    ComprobanteStatus.SENT: frozenset({
        ComprobanteStatus.SENT,
        ComprobanteStatus.ACCEPTED,
        ComprobanteStatus.REJECTED,
    }),
    ComprobanteStatus.ACCEPTED: frozenset(),
    ComprobanteStatus.REJECTED: frozenset(),
}

TERMINAL_STATES = frozenset(
    state for state, targets in ALLOWED_TRANSITIONS.items() if not targets
)
OPEN_STATES = frozenset(ALLOWED_TRANSITIONS) - TERMINAL_STATES


def can_transition(current: ComprobanteStatus, target: ComprobanteStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def apply_transition(comprobante: Comprobante, target: ComprobanteStatus) -> None:
    current = comprobante.status
    if not can_transition(current, target):
        raise InvalidStateTransition(
            f"No se puede pasar de {current.value} a {target.value}",
            comprobante_id=comprobante.id,
            status=current.value,
        )
    comprobante.status = target
