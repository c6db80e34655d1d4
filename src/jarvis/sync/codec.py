"""Entity codec: entities to and from their on-remote text form.

Notes are Markdown with a frontmatter block of JSON-encoded values, then a
level-1 heading for the title and the body. Tasks are pretty-printed JSON.

    notes/2024-02/<id>.md
    tasks/2024-02/<id>.json
"""

from __future__ import annotations

import json
import re
from pathlib import PurePosixPath
from typing import Any

import frontmatter
import yaml

from jarvis.models import (
    Entity,
    EntityKind,
    Note,
    Task,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from jarvis.sync.errors import DecodeError

_HEADING_RE = re.compile(r"^#(?:[ \t]+(.*?))?[ \t]*$")
# Exact layout written by encode(); header values are JSON so never span lines
_ENCODED_NOTE_RE = re.compile(r"\A---\n.*?\n---\n\n# ([^\n]*)\n\n(.*)\n\Z", re.DOTALL)
# Legacy flat layout: notes/2024-01-<id>.md
_LEGACY_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-")

_TASK_KEYS = {
    "description": "description",
    "category": "category",
    "dueDate": "due_date",
    "completedAt": "completed_at",
}


def _json_value(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


# ── Paths ─────────────────────────────────────────────────────


def remote_path(entity: Entity) -> str:
    """``{kind}/{yyyy-MM}/{id}.{ext}``, month from the UTC creation time."""
    month = entity.created_at.strftime("%Y-%m")
    return f"{entity.kind.value}/{month}/{entity.id}.{entity.kind.extension}"


def id_from_path(path: str) -> str:
    stem = PurePosixPath(path).stem
    parent = PurePosixPath(path).parent.name
    if parent in (k.value for k in EntityKind):
        stem = _LEGACY_PREFIX_RE.sub("", stem)
    return stem


# ── Dict form (also used by the local store) ─────────────────


def to_dict(entity: Entity) -> dict[str, Any]:
    """camelCase dict with ISO timestamps; optional task fields omitted when unset."""
    if isinstance(entity, Note):
        return {
            "id": entity.id,
            "title": entity.title,
            "content": entity.content,
            "tags": list(entity.tags),
            "createdAt": format_timestamp(entity.created_at),
            "updatedAt": format_timestamp(entity.updated_at),
            "isAiGenerated": entity.is_ai_generated,
        }
    if isinstance(entity, Task):
        data: dict[str, Any] = {
            "id": entity.id,
            "title": entity.title,
            "status": entity.status,
            "priority": entity.priority,
            "createdAt": format_timestamp(entity.created_at),
            "updatedAt": format_timestamp(entity.updated_at),
        }
        for key, attr in _TASK_KEYS.items():
            value = getattr(entity, attr)
            if value is None:
                continue
            data[key] = format_timestamp(value) if key in ("dueDate", "completedAt") else value
        return data
    raise TypeError(f"Unsupported entity type: {type(entity).__name__}")


def from_dict(kind: EntityKind, data: dict[str, Any], path: str = "<dict>") -> Entity:
    """Inverse of to_dict. Unknown keys are ignored."""
    if not isinstance(data, dict):
        raise DecodeError(path, f"expected an object, got {type(data).__name__}")
    if not data.get("id"):
        raise DecodeError(path, "missing id")
    try:
        now = utcnow()
        common = {
            "id": str(data["id"]),
            "created_at": parse_timestamp(data.get("createdAt") or now),
            "updated_at": parse_timestamp(data.get("updatedAt") or now),
            "title": data.get("title") or "",
        }
        if kind is EntityKind.NOTE:
            return Note(
                **common,
                content=data.get("content") or "",
                tags=[str(t) for t in data.get("tags") or []],
                is_ai_generated=bool(data.get("isAiGenerated", False)),
            )
        optional = {}
        for key, attr in _TASK_KEYS.items():
            value = data.get(key)
            if value is not None and key in ("dueDate", "completedAt"):
                value = parse_timestamp(value)
            optional[attr] = value
        return Task(
            **common,
            status=data.get("status", "todo"),
            priority=data.get("priority", "medium"),
            **optional,
        )
    except (TypeError, ValueError) as e:
        raise DecodeError(path, str(e)) from e


# ── Text form ─────────────────────────────────────────────────


def encode(entity: Entity) -> str:
    """Render an entity as the text stored on the remote."""
    if isinstance(entity, Note):
        header = "\n".join(
            [
                f"id: {_json_value(entity.id)}",
                f"tags: {_json_value(list(entity.tags))}",
                f"createdAt: {_json_value(format_timestamp(entity.created_at))}",
                f"updatedAt: {_json_value(format_timestamp(entity.updated_at))}",
                f"isAiGenerated: {_json_value(entity.is_ai_generated)}",
            ]
        )
        return f"---\n{header}\n---\n\n# {entity.title}\n\n{entity.content}\n"
    return json.dumps(to_dict(entity), indent=2, ensure_ascii=False) + "\n"


def decode(kind: EntityKind, path: str, text: str) -> Entity:
    """Parse remote text back into an entity. Raises DecodeError."""
    if kind is EntityKind.NOTE:
        return _decode_note(path, text)
    try:
        data = json.loads(text)
    except ValueError as e:
        raise DecodeError(path, f"invalid JSON: {e}") from e
    return from_dict(kind, data, path)


def _decode_note(path: str, text: str) -> Note:
    try:
        post = frontmatter.loads(text)
    except yaml.YAMLError as e:
        raise DecodeError(path, f"invalid frontmatter: {e}") from e

    meta = dict(post.metadata)
    exact = _ENCODED_NOTE_RE.match(text)
    if exact:
        # frontmatter strips the post, so take title and body verbatim
        title, body = exact.group(1), exact.group(2)
    else:
        title, body = _split_title(post.content)
    data = {
        "id": meta.get("id") or id_from_path(path),
        "title": title,
        "content": body,
        "tags": meta.get("tags") or [],
        "createdAt": meta.get("createdAt"),
        "updatedAt": meta.get("updatedAt"),
        "isAiGenerated": meta.get("isAiGenerated", False),
    }
    if not isinstance(data["tags"], list):
        data["tags"] = [data["tags"]]
    return from_dict(EntityKind.NOTE, data, path)


def _split_title(body: str) -> tuple[str, str]:
    """Take a leading ``# Title`` line off the body. No heading means "Untitled"."""
    first, _, rest = body.partition("\n")
    match = _HEADING_RE.match(first)
    if not match:
        return "Untitled", body.strip()
    return (match.group(1) or ""), rest.strip()
