from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


class FailureCode(str, Enum):
    """Expected, non-exceptional ways a claim or delivery can end."""

    CLAIMED_BY_OTHER = "claimed_by_other"
    PROFILE_NOT_FOUND = "profile_not_found"
    STATE_WRITE_FAILED = "state_write_failed"
    BRIDGE_SEND_FAILED = "bridge_send_failed"
    UNKNOWN = "unknown"


@dataclass
class Result(Generic[T]):
    """Outcome of a claim or delivery; ``error_code`` is the plain string value of a FailureCode."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: Union[FailureCode, str] = FailureCode.UNKNOWN) -> "Result[T]":
        return Result(ok=False, error=error, error_code=FailureCode(code).value)

    def failed_with(self, code: Union[FailureCode, str]) -> bool:
        return not self.ok and self.error_code == FailureCode(code).value
