"""Redaction of citizen contact details before they reach the activity log."""

import hashlib
import re
from typing import Any


# Contact details citizens and reviewers tend to paste into free text
_SENSITIVE_PATTERNS = [
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),  # Email
    re.compile(r"(?<!\d)\+?\d[\d ]{8,13}\d(?!\d)"),  # Phone numbers
    re.compile(r"\b\d{4}\s?\d{4}\s?\d{4}\b"),  # National ID style numbers
]

_SENSITIVE_KEYS = {"phone", "email", "address", "reporter_name", "reporter_phone",
                   "reporter_email", "contact", "latitude", "longitude"}


def redact_value(value: str) -> str:
    """Hash a sensitive string value so equal inputs stay correlatable."""
    return f"REDACTED:{hashlib.sha256(value.encode()).hexdigest()[:12]}"


def redact_text(text: str) -> str:
    for pattern in _SENSITIVE_PATTERNS:
        text = pattern.sub("[REDACTED]", text)
    return text


def redact_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively redact sensitive fields from an activity payload."""
    result = {}
    for key, value in data.items():
        if key == "id" or key.endswith("_id"):
            result[key] = value
        elif key.lower() in _SENSITIVE_KEYS:
            result[key] = redact_value(str(value)) if value else None
        elif isinstance(value, dict):
            result[key] = redact_dict(value)
        elif isinstance(value, list):
            result[key] = [
                redact_dict(v) if isinstance(v, dict)
                else redact_text(v) if isinstance(v, str)
                else v
                for v in value
            ]
        elif isinstance(value, str):
            result[key] = redact_text(value)
        else:
            result[key] = value
    return result
