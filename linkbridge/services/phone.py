import re

DEFAULT_COUNTRY_CODE = "234"

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Map a raw phone string to its canonical digit form with country code.

    "0501234567", "050 123 4567" and "+234 501 234 567" all become "234501234567".
    """
    cleaned = _NON_DIGITS.sub("", raw or "")
    if cleaned.startswith("0"):
        cleaned = country_code + cleaned[1:]
    if len(cleaned) == 10:
        cleaned = country_code + cleaned
    return cleaned


def phone_from_chat_id(chat_id: str) -> str:
    """Strip the transport suffix: "234501234567@c.us" -> "234501234567"."""
    return (chat_id or "").split("@", 1)[0]
