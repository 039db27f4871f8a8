"""Session lifecycle.

    pending -> active -> bridge_sending -> bridge_sent -> response_sent

A failed bridge send moves ``bridge_sending`` back to ``pending``, and a pending session
may go straight to ``bridge_sending`` on the next message.
"""

from enum import Enum


class SessionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    BRIDGE_SENDING = "bridge_sending"
    BRIDGE_SENT = "bridge_sent"
    RESPONSE_SENT = "response_sent"


NEXT_STATUSES = {
    SessionStatus.PENDING: frozenset({SessionStatus.ACTIVE, SessionStatus.BRIDGE_SENDING}),
    SessionStatus.ACTIVE: frozenset({SessionStatus.BRIDGE_SENDING}),
    SessionStatus.BRIDGE_SENDING: frozenset({SessionStatus.BRIDGE_SENT, SessionStatus.PENDING}),
    SessionStatus.BRIDGE_SENT: frozenset({SessionStatus.RESPONSE_SENT}),
    SessionStatus.RESPONSE_SENT: frozenset(),
}

# Once a session reaches one of these, further inbound messages for it are duplicates.
IN_FLIGHT_STATUSES = frozenset(
    {SessionStatus.BRIDGE_SENDING, SessionStatus.BRIDGE_SENT, SessionStatus.RESPONSE_SENT}
)


class InvalidTransitionError(Exception):
    def __init__(self, from_state: SessionStatus, to_state: SessionStatus):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Session cannot move {from_state.value} -> {to_state.value}")


def can_transition(from_state: SessionStatus, to_state: SessionStatus) -> bool:
    return to_state in NEXT_STATUSES[from_state]


def transition(from_state: SessionStatus, to_state: SessionStatus) -> SessionStatus:
    if to_state not in NEXT_STATUSES[from_state]:
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def is_in_flight(status: SessionStatus) -> bool:
    return status in IN_FLIGHT_STATUSES
