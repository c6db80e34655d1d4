"""Sync orchestration: client state plus the single ``sync()`` entry point.

Callers never need exception handling for routine failures: every error in a
round is folded into ``SyncResult(success=False, error=...)``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING

from jarvis.models import Entity, EntityKind, Note, Task, utcnow
from jarvis.sync import codec
from jarvis.sync.engine import (
    ConflictResolver,
    MergeEngine,
    SyncResult,
    resolver_for_policy,
)
from jarvis.sync.github import GitHubClient
from jarvis.sync.metadata import MetadataStore
from jarvis.sync.settings import SettingsStore

if TYPE_CHECKING:
    from jarvis.config import JarvisConfig
    from jarvis.store import EntityStore

logger = logging.getLogger(__name__)


class SyncService:
    """Holds sync configuration and state for one remote target."""

    def __init__(
        self,
        config: JarvisConfig,
        client: GitHubClient | None = None,
        settings_store: SettingsStore | None = None,
    ) -> None:
        self.config = config
        self._client = client or GitHubClient(config.github)
        self._metadata_store = MetadataStore(self._client, config.sync.metadata_path)
        self._engine = MergeEngine(
            self._client, self._metadata_store, max_concurrency=config.sync.max_concurrency
        )
        self._settings_store = settings_store or SettingsStore(config.data_dir)
        self._settings = self._settings_store.load()
        self._default_resolver = resolver_for_policy(config.sync.conflict_policy)
        self._in_flight = False
        self.last_result: SyncResult | None = None

    # ── Client state ──────────────────────────────────────────

    @property
    def is_enabled(self) -> bool:
        return self.config.github.is_enabled

    @property
    def remote_target(self) -> str | None:
        return self.config.github.target if self.is_enabled else None

    @property
    def auto_sync(self) -> bool:
        return self._settings.auto_sync

    @property
    def last_sync_at(self) -> datetime | None:
        return self._settings.last_sync_at

    @property
    def is_syncing(self) -> bool:
        return self._in_flight

    def set_auto_sync(self, enabled: bool) -> None:
        self._settings.auto_sync = enabled
        self._settings_store.save(self._settings)
        logger.info("Auto-sync %s", "enabled" if enabled else "disabled")

    async def validate(self) -> bool:
        if not self.is_enabled:
            return False
        return await self._client.validate_access()

    async def delete_remote(self, entity: Entity) -> bool:
        """Remove an entity's file from the remote. Returns False if it was not there."""
        if not self.is_enabled:
            return False
        path = codec.remote_path(entity)
        remote = await self._client.read_file(path)
        if remote is None:
            return False
        deleted = await self._client.delete_file(
            path, remote.sha, f"Delete {entity.kind.label} {entity.id}"
        )
        logger.info("Deleted remote %s", path)
        return deleted

    async def close(self) -> None:
        await self._client.close()

    # ── Sync ──────────────────────────────────────────────────

    async def sync(
        self,
        notes: Iterable[Note],
        tasks: Iterable[Task],
        resolver: ConflictResolver | None = None,
    ) -> SyncResult:
        """Run one round: notes then tasks, sharing one metadata load.

        Counts for a kind that completed are kept even if a later kind fails.
        ``last_sync_at`` only advances when the whole round succeeds.
        """
        if not self.is_enabled:
            return SyncResult(success=False, error="GitHub sync not configured")
        if self._in_flight:
            return SyncResult(success=False, error="Sync already in progress")

        resolver = resolver or self._default_resolver
        result = SyncResult(success=False)
        self._in_flight = True
        try:
            metadata = await self._metadata_store.load()
            result.notes = await self._engine.sync_kind(
                EntityKind.NOTE, notes, metadata, resolver
            )
            result.tasks = await self._engine.sync_kind(
                EntityKind.TASK, tasks, metadata, resolver
            )
            result.success = True
        except Exception as e:
            logger.error("Sync with %s failed: %s", self.config.github.target, e)
            result.error = str(e) or type(e).__name__
        finally:
            self._in_flight = False

        if result.success:
            self._settings.last_sync_at = utcnow()
            self._settings_store.save(self._settings)
        self.last_result = result
        return result

    async def sync_store(
        self, store: EntityStore, resolver: ConflictResolver | None = None
    ) -> SyncResult:
        """Sync everything in ``store`` and apply what came back from the remote."""
        result = await self.sync(
            store.list_all(EntityKind.NOTE),
            store.list_all(EntityKind.TASK),
            resolver,
        )
        for kind in EntityKind:
            kind_result = result.for_kind(kind)
            incoming: list[Entity] = kind_result.downloads + kind_result.resolved
            for entity in incoming:
                store.put(entity)
            if incoming:
                logger.info("Applied %d remote %s(s) locally", len(incoming), kind.label)
        return result

    async def on_local_change(self, store: EntityStore) -> SyncResult | None:
        """Sync after a local mutation when auto-sync is on and nothing is running."""
        if not (self.auto_sync and self.is_enabled) or self._in_flight:
            return None
        return await self.sync_store(store)
