"""Sync metadata: the per-entity watermark stored as a file on the remote.

    {
      "lastSyncAt": "2024-02-10T08:30:00.000Z",
      "notes": {"<id>": {"updatedAt": "...", "sha": "..."}},
      "tasks": {"<id>": {"updatedAt": "...", "sha": "..."}}
    }

An entry records the ``updatedAt`` this device last pushed for an entity,
not necessarily what is live on the remote right now.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from jarvis.models import EntityKind, format_timestamp, parse_timestamp

if TYPE_CHECKING:
    from jarvis.sync.github import GitHubClient

logger = logging.getLogger(__name__)


@dataclass
class SyncEntry:
    updated_at: datetime
    sha: str = ""


@dataclass
class SyncMetadata:
    """In-memory form of the metadata file."""

    last_sync_at: datetime | None = None
    notes: dict[str, SyncEntry] = field(default_factory=dict)
    tasks: dict[str, SyncEntry] = field(default_factory=dict)

    def entries(self, kind: EntityKind) -> dict[str, SyncEntry]:
        return self.notes if kind is EntityKind.NOTE else self.tasks

    def record(self, kind: EntityKind, entity_id: str, updated_at: datetime, sha: str = "") -> None:
        self.entries(kind)[entity_id] = SyncEntry(updated_at=updated_at, sha=sha)

    def to_json(self) -> str:
        def section(entries: dict[str, SyncEntry]) -> dict:
            return {
                entity_id: {"updatedAt": format_timestamp(e.updated_at), "sha": e.sha}
                for entity_id, e in sorted(entries.items())
            }

        data = {
            "lastSyncAt": format_timestamp(self.last_sync_at) if self.last_sync_at else "",
            "notes": section(self.notes),
            "tasks": section(self.tasks),
        }
        return json.dumps(data, indent=2) + "\n"

    @classmethod
    def from_json(cls, text: str) -> SyncMetadata:
        """Parse the metadata file. Raises ValueError on malformed content."""
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("metadata must be a JSON object")

        def section(raw: object) -> dict[str, SyncEntry]:
            if not isinstance(raw, dict):
                return {}
            return {
                str(entity_id): SyncEntry(
                    updated_at=parse_timestamp(entry["updatedAt"]),
                    sha=entry.get("sha", ""),
                )
                for entity_id, entry in raw.items()
            }

        last = data.get("lastSyncAt")
        try:
            return cls(
                last_sync_at=parse_timestamp(last) if last else None,
                notes=section(data.get("notes")),
                tasks=section(data.get("tasks")),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"malformed metadata entry: {e}") from e


class MetadataStore:
    """Loads and saves the metadata file with an optimistic revision check."""

    def __init__(self, client: GitHubClient, path: str = ".jarvis-sync.json") -> None:
        self._client = client
        self.path = path
        self._sha: str | None = None

    async def load(self) -> SyncMetadata:
        """Read the record. A missing file is a fresh install, not an error."""
        remote = await self._client.read_file(self.path)
        if remote is None:
            self._sha = None
            logger.info("No sync metadata at %s, starting fresh", self.path)
            return SyncMetadata()

        # Keep the sha even if parsing fails so save() can replace the file.
        self._sha = remote.sha
        try:
            return SyncMetadata.from_json(remote.content)
        except ValueError as e:
            logger.warning("Ignoring unreadable sync metadata %s: %s", self.path, e)
            return SyncMetadata()

    async def save(self, metadata: SyncMetadata) -> None:
        """Write the record back.

        Uses the sha from the last load/save as the expected revision, so a
        concurrent writer surfaces as ConflictError instead of being clobbered.
        """
        message = "Update sync metadata" if self._sha else "Create sync metadata"
        self._sha = await self._client.write_file(
            self.path, metadata.to_json(), message, expected_sha=self._sha
        )
        logger.debug("Saved sync metadata (%s)", self._sha[:7])
