"""Entity types shared by the local store and the sync engine.

Notes and Tasks share a common base (id, created_at, updated_at). All
timestamps are timezone-aware UTC and carry millisecond precision, which is
what the remote file formats can represent.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import ClassVar

TASK_STATUSES = ("todo", "in-progress", "completed")
TASK_PRIORITIES = ("low", "medium", "high")


class EntityKind(str, Enum):
    """Entity variant; the value doubles as the remote directory name."""

    NOTE = "notes"
    TASK = "tasks"

    @property
    def extension(self) -> str:
        return "md" if self is EntityKind.NOTE else "json"

    @property
    def label(self) -> str:
        """Singular name used in commit messages."""
        return "note" if self is EntityKind.NOTE else "task"


def utcnow() -> datetime:
    return normalize_timestamp(datetime.now(timezone.utc))


def normalize_timestamp(value: datetime) -> datetime:
    """Coerce to UTC and drop sub-millisecond precision. Naive values are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 with milliseconds and a Z suffix, e.g. 2024-02-10T08:30:00.000Z."""
    value = normalize_timestamp(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: str | datetime | date) -> datetime:
    """Parse an ISO-8601 string (or pass through a datetime or date) into UTC."""
    if isinstance(value, datetime):
        return normalize_timestamp(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str):
        raise TypeError(f"Unsupported timestamp value: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return normalize_timestamp(datetime.fromisoformat(text))


@dataclass
class Entity:
    """Common base: anything with an id and creation/update timestamps."""

    kind: ClassVar[EntityKind]

    id: str
    created_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        self.created_at = normalize_timestamp(self.created_at)
        self.updated_at = normalize_timestamp(self.updated_at)
        if self.updated_at < self.created_at:
            self.updated_at = self.created_at

    def touch(self) -> None:
        """Mark a local mutation."""
        self.updated_at = max(utcnow(), self.created_at)


@dataclass
class Note(Entity):
    kind: ClassVar[EntityKind] = EntityKind.NOTE

    title: str = ""
    content: str = ""
    tags: list[str] = field(default_factory=list)
    is_ai_generated: bool = False


@dataclass
class Task(Entity):
    kind: ClassVar[EntityKind] = EntityKind.TASK

    title: str = ""
    description: str | None = None
    status: str = "todo"
    priority: str = "medium"
    category: str | None = None
    due_date: datetime | None = None
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.status not in TASK_STATUSES:
            raise ValueError(f"Invalid task status: {self.status!r}")
        if self.priority not in TASK_PRIORITIES:
            raise ValueError(f"Invalid task priority: {self.priority!r}")
        if self.due_date is not None:
            self.due_date = normalize_timestamp(self.due_date)
        if self.completed_at is not None:
            self.completed_at = normalize_timestamp(self.completed_at)


def new_note(title: str, content: str = "", tags: list[str] | None = None,
             is_ai_generated: bool = False) -> Note:
    now = utcnow()
    return Note(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        title=title,
        content=content,
        tags=list(tags or []),
        is_ai_generated=is_ai_generated,
    )


def new_task(title: str, priority: str = "medium", **fields) -> Task:
    now = utcnow()
    return Task(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        title=title,
        priority=priority,
        **fields,
    )
