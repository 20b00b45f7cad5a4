"""
Safe identifiers.

Namespace tags and property keys are spliced into query text as structural
identifiers (labels, property names, JSON paths), never bound as parameters,
so they must match a strict alphanumeric/underscore grammar first.
"""

from __future__ import annotations
import re
import uuid

from loguru import logger

from songmap.errors import InvalidArgumentError

SAFE_IDENTIFIER = re.compile(r"[A-Za-z0-9_]+")


def is_safe_identifier(value) -> bool:
    return isinstance(value, str) and SAFE_IDENTIFIER.fullmatch(value) is not None


def validate_identifier(value, what: str = "identifier") -> str:
    """
    Return ``value`` unchanged if it is a safe identifier.

    Raises:
        InvalidArgumentError: if the value is empty or contains anything but
            letters, digits and underscores.
    """
    if not isinstance(value, str) or not value:
        raise InvalidArgumentError(f"{what} must not be empty")
    if not SAFE_IDENTIFIER.fullmatch(value):
        logger.warning(f"Rejected unsafe {what}: {value!r}")
        raise InvalidArgumentError(
            f"Invalid {what}: {value!r}. Only letters, digits and underscore are allowed."
        )
    return value


def generate_tag(user_id) -> str:
    """Unique namespace tag, e.g. ``G_u10_3f2a...``; the prefix keeps it from starting with a digit."""
    owner = validate_identifier(str(user_id), "user id")
    return f"G_u{owner}_{uuid.uuid4().hex}"


def require_text(value, what: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidArgumentError(f"{what} must not be empty")
    return str(value)
