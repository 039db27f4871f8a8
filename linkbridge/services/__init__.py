from linkbridge.services.result import FailureCode, Result
from linkbridge.services.state_machine import (
    InvalidTransitionError,
    SessionStatus,
    can_transition,
    is_in_flight,
    transition,
)
