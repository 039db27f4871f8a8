from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, Field

from linkbridge.services.phone import phone_from_chat_id


class InboundMessageEvent(BaseModel):
    """Inbound chat message as forwarded by the WhatsApp transport."""

    chat_id: str = Field(validation_alias=AliasChoices("from", "chat_id", "chatId"))
    body: str = ""
    message_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("id", "messageId"))

    @property
    def sender_phone(self) -> str:
        return phone_from_chat_id(self.chat_id)


class AuthEvent(BaseModel):
    event: Literal["qr", "authenticated", "auth_failure", "ready", "disconnected"]
    detail: Optional[str] = None


class WebhookResponse(BaseModel):
    success: bool
    outcome: str
    session_id: Optional[str] = None
    message: Optional[str] = None
