"""TypedDicts for MCP tool handler and dashboard route API responses."""

from __future__ import annotations

from typing import Literal, NotRequired, TypedDict


class ErrorResponse(TypedDict):
    """Standard error envelope returned by MCP error paths."""

    error: str
    code: str


class TransitionError(TypedDict):
    """Extended error for rejected state changes.

    Includes the legal target ids so the caller can re-offer valid moves.
    """

    error: str
    code: Literal["invalid_transition", "conflict"]
    legal_state_ids: NotRequired[list[str]]
    hint: NotRequired[str]
