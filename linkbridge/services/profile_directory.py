from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

import httpx
import yaml

from linkbridge.logging_config import get_logger
from linkbridge.schemas.profile import Profile
from linkbridge.schemas.session import InvalidRecordError

logger = get_logger("profile_directory")

SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"


class ProfileDirectory:
    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        raise NotImplementedError


def _parse_profile(row: dict[str, Any], profile_id: str) -> Optional[Profile]:
    try:
        return Profile.from_row(row)
    except InvalidRecordError as exc:
        logger.warning(
            "Skipping invalid profile row",
            extra={"context": {"profile_id": profile_id, "error": exc.reason}},
        )
        return None


def rows_to_records(rows: list[list[Any]]) -> list[dict[str, Any]]:
    """Turn a header row plus value rows into dicts; short rows are padded with None."""
    if not rows:
        return []
    headers = rows[0]
    records = []
    for row in rows[1:]:
        records.append({header: (row[i] if i < len(row) else None) for i, header in enumerate(headers)})
    return records


class GoogleSheetsProfileDirectory(ProfileDirectory):
    """Profiles kept in a Google Sheet, read through the Sheets v4 values API."""

    def __init__(
        self,
        sheet_id: str,
        api_key: str,
        *,
        sheet_range: str = "Helsinki!A:Z",
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.sheet_id = sheet_id
        self.api_key = api_key
        self.sheet_range = sheet_range
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def _fetch_rows(self) -> list[list[Any]]:
        url = f"{SHEETS_API_URL}/{self.sheet_id}/values/{quote(self.sheet_range, safe='')}"
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await client.get(url, params={"key": self.api_key})
            response.raise_for_status()
            return response.json().get("values") or []

    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        try:
            rows = await self._fetch_rows()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                f"Error fetching profiles from Google Sheets: {e}", extra={"context": {"profile_id": profile_id}}
            )
            return None

        if len(rows) <= 1:
            logger.error("No profile data found in sheet", extra={"context": {"range": self.sheet_range}})
            return None
        if "ID" not in rows[0]:
            logger.error("Required header 'ID' not found in sheet", extra={"context": {"range": self.sheet_range}})
            return None

        for record in rows_to_records(rows):
            if record.get("ID") == profile_id:
                return _parse_profile(record, profile_id)

        logger.warning(f"Profile {profile_id} not found", extra={"context": {"profile_id": profile_id}})
        return None


class YamlProfileDirectory(ProfileDirectory):
    """Profiles from a local YAML file: ``profiles: [{ID: ..., BRIDGE MESSAGE: ...}, ...]``."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _load(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            logger.error(f"Profiles file not found: {self.path}")
            return []
        with self.path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        profiles = data.get("profiles") if isinstance(data, dict) else None
        if not isinstance(profiles, list):
            return []
        return [item for item in profiles if isinstance(item, dict)]

    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        for item in self._load():
            row = {str(k): (str(v) if v is not None else None) for k, v in item.items()}
            if row.get("ID") == profile_id:
                return _parse_profile(row, profile_id)
        logger.warning(
            f"Profile {profile_id} not found",
            extra={"context": {"profile_id": profile_id, "path": str(self.path)}},
        )
        return None
