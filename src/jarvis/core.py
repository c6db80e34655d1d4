"""Jarvis composition root: the local entity store wired to the sync service.

Responsibilities:
1. Own the local store and sync service for one data directory
2. Apply local mutations (create/update/delete), refreshing ``updated_at``
3. Notify the sync service after each mutation (auto-sync)
4. Expose on-demand sync to the CLI and other front ends
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from jarvis.config import JarvisConfig
from jarvis.models import Entity, EntityKind, Note, Task, new_note, new_task
from jarvis.store import LocalEntityStore
from jarvis.sync.service import SyncService

if TYPE_CHECKING:
    from jarvis.store import EntityStore
    from jarvis.sync.engine import ConflictResolver, SyncResult

logger = logging.getLogger(__name__)


class Jarvis:
    """Personal-assistant data layer with optional GitHub sync."""

    def __init__(
        self,
        config: JarvisConfig,
        store: EntityStore | None = None,
        sync: SyncService | None = None,
    ) -> None:
        self.config = config
        self.store = store or LocalEntityStore(config.data_dir)
        self.sync_service = sync or SyncService(config)

    # ── Notes ────────────────────────────────────────────────

    async def add_note(self, title: str, content: str = "", tags: list[str] | None = None) -> Note:
        note = new_note(title, content, tags)
        await self._save(note)
        return note

    async def update_note(self, note_id: str, **changes) -> Note:
        return await self._update(EntityKind.NOTE, note_id, changes)

    # ── Tasks ────────────────────────────────────────────────

    async def add_task(self, title: str, priority: str = "medium", **fields) -> Task:
        task = new_task(title, priority, **fields)
        await self._save(task)
        return task

    async def update_task(self, task_id: str, **changes) -> Task:
        return await self._update(EntityKind.TASK, task_id, changes)

    # ── Shared ───────────────────────────────────────────────

    async def delete(self, kind: EntityKind, entity_id: str, remote: bool = False) -> bool:
        """Delete locally, and from the remote repository when ``remote`` is set.

        Sync never deletes remote files on its own: an entity removed only
        locally is offered again as a download on the next sync.
        """
        entity = self.store.get(kind, entity_id)
        if entity is None:
            return False
        self.store.delete(kind, entity_id)
        if remote:
            await self.sync_service.delete_remote(entity)
        return True

    async def _update(self, kind: EntityKind, entity_id: str, changes: dict) -> Entity:
        current = self.store.get(kind, entity_id)
        if current is None:
            raise KeyError(f"No {kind.label} with id {entity_id}")
        updated = replace(current, **changes)
        updated.touch()
        await self._save(updated)
        return updated

    async def _save(self, entity: Entity) -> None:
        self.store.put(entity)
        logger.debug("Saved %s %s", entity.kind.label, entity.id)
        await self.sync_service.on_local_change(self.store)

    async def sync(self, resolver: ConflictResolver | None = None) -> SyncResult:
        return await self.sync_service.sync_store(self.store, resolver)

    async def close(self) -> None:
        await self.sync_service.close()
