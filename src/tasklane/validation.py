"""Shared validation functions for all entry points.

Pure functions with no MCP, FastAPI, or Click dependencies.
"""

from __future__ import annotations

import unicodedata
from typing import Any

_MAX_ACTOR_LENGTH = 128
_MAX_NAME_LENGTH = 200


def _first_control_char(value: str) -> str | None:
    for ch in value:
        if unicodedata.category(ch).startswith("C"):  # Cc (control) and Cf (format)
            return ch
    return None


def sanitize_actor(value: Any) -> tuple[str, str | None]:
    """Validate and clean an actor name.

    Returns (cleaned_actor, None) on success or ("", error_message) on failure.
    Strips whitespace, then checks: non-empty, max length, no control/format chars.
    """
    if not isinstance(value, str):
        return ("", "actor must be a string")
    # Check before stripping: reject "\nbad" rather than absorbing the newline.
    bad = _first_control_char(value)
    if bad is not None:
        return ("", f"actor must not contain control characters (found U+{ord(bad):04X})")
    cleaned = value.strip()
    if not cleaned:
        return ("", "actor must not be empty")
    if len(cleaned) > _MAX_ACTOR_LENGTH:
        return ("", f"actor must be at most {_MAX_ACTOR_LENGTH} characters")
    return (cleaned, None)


def sanitize_name(value: Any, what: str = "name") -> tuple[str, str | None]:
    """Validate and clean a display name (project, state, workflow, task type, task).

    Same contract as ``sanitize_actor``; *what* labels the error message.
    """
    if not isinstance(value, str):
        return ("", f"{what} must be a string")
    bad = _first_control_char(value)
    if bad is not None:
        return ("", f"{what} must not contain control characters (found U+{ord(bad):04X})")
    cleaned = value.strip()
    if not cleaned:
        return ("", f"{what} cannot be empty")
    if len(cleaned) > _MAX_NAME_LENGTH:
        return ("", f"{what} must be at most {_MAX_NAME_LENGTH} characters")
    return (cleaned, None)


def require_name(value: Any, what: str = "name") -> str:
    """``sanitize_name`` for library callers: returns the cleaned value or raises ValueError."""
    cleaned, err = sanitize_name(value, what)
    if err:
        raise ValueError(err)
    return cleaned
