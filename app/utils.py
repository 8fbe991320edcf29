"""Utility helpers for the BingeBoard service."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]{3,24}$")
JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
BARE_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)

DISPLAY_NAME_MAX_LENGTH = 50


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime for storage."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_email(value: str) -> bool:
    """Return ``True`` when the value looks like an email address."""

    return bool(EMAIL_RE.match(value))


def is_valid_username(value: object) -> bool:
    return isinstance(value, str) and bool(USERNAME_RE.match(value))


def is_valid_display_name(value: object) -> bool:
    if not isinstance(value, str):
        return False
    stripped = value.strip()
    return 0 < len(stripped) <= DISPLAY_NAME_MAX_LENGTH


def year_from_date(value: str | None) -> str | None:
    """Return the four character year prefix of a catalog date string."""

    if not value:
        return None
    return value[:4]


def extract_json_object(content: str) -> dict[str, Any]:
    """Extract and parse the first JSON object from a model response."""

    match = JSON_BLOCK_RE.search(content)
    if match:
        payload = match.group(1)
    else:
        match = BARE_JSON_RE.search(content)
        if not match:
            raise ValueError("No JSON object found in response")
        payload = match.group(0)

    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON payload produced by the model") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Model response is not a JSON object")
    return parsed
