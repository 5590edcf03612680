"""Foundational TypedDicts for dataclass to_dict() returns."""

from __future__ import annotations

from typing import NewType, TypedDict

ISOTimestamp = NewType("ISOTimestamp", str)


class ProjectConfig(TypedDict, total=False):
    """Shape of .tasklane/config.json."""

    prefix: str
    name: str
    version: int
    project_id: str


class ProjectDict(TypedDict):
    id: str
    name: str
    created_at: ISOTimestamp


class TaskDict(TypedDict):
    id: str
    project_id: str
    name: str
    description: str
    task_type_id: str | None
    state_id: str | None
    state_name: str | None
    created_at: ISOTimestamp
    updated_at: ISOTimestamp


class EventRecord(TypedDict):
    """Row from the events table (SELECT * FROM events).

    Returned by ``get_task_events()`` and ``get_recent_events()``.
    """

    id: int
    task_id: str
    event_type: str
    actor: str
    old_value: str | None
    new_value: str | None
    comment: str
    created_at: ISOTimestamp
