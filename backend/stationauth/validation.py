from __future__ import annotations

import re
from typing import Any


MAX_TEXT_LENGTH = 1000

_EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate grant)."""


class InvalidTransitionError(ValidationError):
    """
    A workflow object was asked to leave a state it has already left.

    A second approve/reject/countersign is a 400 like any other bad input.
    It is raised before any store mutation.
    """


def sanitize_input(value: Any, *, max_length: int = MAX_TEXT_LENGTH) -> str | None:
    """
    Normalize free-text input.

    - None -> None
    - angle brackets removed, surrounding whitespace trimmed
    - truncated to max_length
    - "" after trimming -> None
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("Expected a string value")
    cleaned = value.replace("<", "").replace(">", "").strip()[:max_length]
    return cleaned or None


def require_text(data: dict, field: str, *, max_length: int = MAX_TEXT_LENGTH) -> str:
    value = sanitize_input(data.get(field), max_length=max_length)
    if not value:
        raise ValidationError(f"{field} is required")
    return value


def normalize_email(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError("A valid email address is required")
    email = value.strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError("A valid email address is required")
    return email


class NotFoundError(LookupError):
    """404-level: the referenced row does not exist."""
