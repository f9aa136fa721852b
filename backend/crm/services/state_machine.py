# Overview: Opportunity state catalogue and transition validation.

"""
Opportunity State Machine

STATES:
    nueva -> en_seguimiento -> enviar_cotizacion -> cotizacion_enviada -> ganada | perdida | cerrada

    The arrow chain above is the usual path through a sale, not a constraint:
    the graph is fully connected. Any state may move to any other state,
    including itself and including from a terminal state back to an open one
    (re-opening a deal).

RULES:
1. `nueva` is the only initial state. It is assigned at creation and is never
   supplied by a caller on create.
2. A requested state must be a member of VALID_STATES, otherwise
   InvalidTransition.
3. A self-transition is only meaningful with a comment. Without one it is a
   NoOpRejected caller error so the audit trail does not fill with empty rows.
4. Terminal states (ganada, perdida, cerrada) end the sales cycle for the
   purposes of duration reporting (see duration_service).
"""

from __future__ import annotations
from typing import Literal


NUEVA = "nueva"
EN_SEGUIMIENTO = "en_seguimiento"
ENVIAR_COTIZACION = "enviar_cotizacion"
COTIZACION_ENVIADA = "cotizacion_enviada"
GANADA = "ganada"
PERDIDA = "perdida"
CERRADA = "cerrada"

# Display order
ORDERED_STATES = (
    NUEVA,
    EN_SEGUIMIENTO,
    ENVIAR_COTIZACION,
    COTIZACION_ENVIADA,
    GANADA,
    PERDIDA,
    CERRADA,
)
VALID_STATES = frozenset(ORDERED_STATES)
TERMINAL_STATES = frozenset({GANADA, PERDIDA, CERRADA})
INITIAL_STATE = NUEVA

OpportunityState = Literal[
    "nueva",
    "en_seguimiento",
    "enviar_cotizacion",
    "cotizacion_enviada",
    "ganada",
    "perdida",
    "cerrada",
]

STATE_LABELS = {
    NUEVA: "Nueva",
    EN_SEGUIMIENTO: "En Seguimiento",
    ENVIAR_COTIZACION: "Enviar Cotización",
    COTIZACION_ENVIADA: "Cotización Enviada",
    GANADA: "Ganada",
    PERDIDA: "Perdida",
    CERRADA: "Cerrada",
}


class LifecycleError(ValueError):
    """
    Raised when a requested state change violates the lifecycle rules.

    This is a domain error, not a technical error.
    """
    pass


class InvalidTransition(LifecycleError):
    """The requested state is not part of the state catalogue."""

    def __init__(self, requested):
        self.requested = requested
        super().__init__(
            f"Invalid state '{requested}'. Must be one of: {', '.join(ORDERED_STATES)}"
        )


class NoOpRejected(LifecycleError):
    """Same-state transition submitted without a comment."""

    def __init__(self, state: str):
        self.state = state
        super().__init__(
            f"Opportunity is already '{state}'. Add a comment to record a follow-up without changing state"
        )


def is_valid_state(state) -> bool:
    return isinstance(state, str) and state in VALID_STATES


def is_terminal(state: str | None) -> bool:
    return state in TERMINAL_STATES


def state_label(state: str) -> str:
    return STATE_LABELS.get(state, state)


def validate_transition(current_state: str, requested_state) -> str:
    """
    Validate a requested transition and return the target state.

    Every member of the catalogue is reachable from every state; only
    membership is checked. Self-transitions pass here; rejecting the
    comment-less ones is done by `require_meaningful_change`, since it needs
    the comment as well.

    Raises:
        InvalidTransition: requested_state is not a known state
    """
    if not is_valid_state(requested_state):
        raise InvalidTransition(requested_state)
    return requested_state


def require_meaningful_change(current_state: str, requested_state: str, comment: str | None) -> None:
    """
    Raises:
        NoOpRejected: requested_state == current_state and comment is blank
    """
    if requested_state == current_state and not (comment or "").strip():
        raise NoOpRejected(current_state)


def catalogue() -> list[dict]:
    """State list for clients (value, label, terminal flag) in display order."""
    return [
        {"value": s, "label": STATE_LABELS[s], "terminal": s in TERMINAL_STATES}
        for s in ORDERED_STATES
    ]
