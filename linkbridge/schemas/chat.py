from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class InitiateChatRequest(BaseModel):
    profile_id: str = Field(validation_alias=AliasChoices("profileId", "companyId"))
    image_ref: Optional[str] = Field(default=None, validation_alias=AliasChoices("imageRef", "imageUrl"))


class InitiateChatResponse(BaseModel):
    message: str
    waLink: str
    sessionId: str


class SessionStatusResponse(BaseModel):
    exists: bool
    ageMinutes: Optional[int] = None
    data: Optional[dict] = None
