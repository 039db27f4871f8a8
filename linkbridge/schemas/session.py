from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from linkbridge.services.state_machine import SessionStatus


class InvalidRecordError(Exception):
    """A stored or fetched record failed validation at the store boundary."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid record at {key}: {reason}")


class Session(BaseModel):
    """Web-initiated inquiry awaiting a chat reply. Serialized with the store's wire names."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    profile_id: str = Field(alias="companyId", min_length=1)
    image_ref: Optional[str] = Field(default=None, alias="imageUrl")
    timestamp: int
    status: SessionStatus = SessionStatus.PENDING
    claimed_phone: Optional[str] = Field(default=None, alias="phoneNumber")
    response_scheduled: bool = Field(default=False, alias="responseScheduled")

    @field_validator("profile_id")
    @classmethod
    def _strip_profile_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("companyId is empty")
        return value

    @classmethod
    def from_store(cls, key: str, raw: Any) -> "Session":
        if not isinstance(raw, dict):
            raise InvalidRecordError(key, f"expected object, got {type(raw).__name__}")
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise InvalidRecordError(key, str(exc.errors()[0].get("msg", exc))) from exc

    def to_store(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.timestamp
