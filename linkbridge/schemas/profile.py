from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from linkbridge.schemas.session import InvalidRecordError

# Directory column headers, spelled exactly as the sheet has them (including odd spacing).
REQUIRED_FIELDS = [
    "ID",
    "BRIDGE MESSAGE",
    "COMPANY IMAGE",
    "COMPANY",
    "OWNER / DRIVER",
    "LANGUAGES - A",
    "LANGUAGES - B",
    "RATE & SERVICES  ( I )",
    "RATE & SERVICES  ( II )",
    "RATE & SERVICES  ( III )",
    "RATE & SERVICES  ( IV )",
    "VEHICLE MODEL",
    "LICENSED",
    "COVERAGE",
    "SERVICES",
    "CUSTOM OFFERS",
    "AVAILABILITY ",
    "CONTACT METHOD",
    "THANK YOU MESSAGE",
]


class Profile(BaseModel):
    """Company profile row from the Profile Directory."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    profile_id: str = Field(alias="ID")
    bridge_message: str = Field(alias="BRIDGE MESSAGE")
    company_image: Optional[str] = Field(default=None, alias="COMPANY IMAGE")
    company: Optional[str] = Field(default=None, alias="COMPANY")
    owner_driver: Optional[str] = Field(default=None, alias="OWNER / DRIVER")
    languages_a: Optional[str] = Field(default=None, alias="LANGUAGES - A")
    languages_b: Optional[str] = Field(default=None, alias="LANGUAGES - B")
    rate_1: Optional[str] = Field(default=None, alias="RATE & SERVICES  ( I )")
    rate_2: Optional[str] = Field(default=None, alias="RATE & SERVICES  ( II )")
    rate_3: Optional[str] = Field(default=None, alias="RATE & SERVICES  ( III )")
    rate_4: Optional[str] = Field(default=None, alias="RATE & SERVICES  ( IV )")
    vehicle_model: Optional[str] = Field(default=None, alias="VEHICLE MODEL")
    licensed: Optional[str] = Field(default=None, alias="LICENSED")
    coverage: Optional[str] = Field(default=None, alias="COVERAGE")
    services: Optional[str] = Field(default=None, alias="SERVICES")
    custom_offers: Optional[str] = Field(default=None, alias="CUSTOM OFFERS")
    availability: Optional[str] = Field(default=None, alias="AVAILABILITY ")
    contact_method: Optional[str] = Field(default=None, alias="CONTACT METHOD")
    thank_you_message: Optional[str] = Field(default=None, alias="THANK YOU MESSAGE")

    @model_validator(mode="before")
    @classmethod
    def _check_row(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if data.get("ID") and data.get("BRIDGE MESSAGE") and not data.get("COMPANY"):
            return data
        missing = [field for field in REQUIRED_FIELDS if not data.get(field)]
        if missing:
            raise ValueError(f"missing field '{missing[0]}'")
        return data

    @property
    def is_bridge_only(self) -> bool:
        """Rows without a company name only carry the bridge message."""
        return not self.company

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Profile":
        key = f"profile:{row.get('ID')}"
        try:
            return cls.model_validate(row)
        except ValidationError as exc:
            raise InvalidRecordError(key, str(exc.errors()[0].get("msg", exc))) from exc
