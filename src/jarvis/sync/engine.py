"""Merge engine: last-write-wins reconciliation of local entities with the remote.

For one entity kind:

1. Discover remote entities (list month directories, fetch, decode).
2. Classify every ID against three snapshots: local, remote, last synced.
3. Upload all winners in one batch commit; record them in the metadata.
4. Persist the metadata.

Classification is pure and finishes before any write, so a failed round
never leaves half-applied decisions. Downloads are returned to the caller;
the engine never writes to the local store.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from jarvis.models import Entity, EntityKind, utcnow
from jarvis.sync import codec
from jarvis.sync.errors import DecodeError, RemoteError, SyncError

if TYPE_CHECKING:
    from jarvis.sync.github import GitHubClient
    from jarvis.sync.metadata import MetadataStore, SyncEntry, SyncMetadata

logger = logging.getLogger(__name__)

# (local, remote) -> entity to upload; may be sync or async
ConflictResolver = Callable[[Entity, Entity], Union[Entity, Awaitable[Entity]]]


# ── Conflict policies ─────────────────────────────────────────


def prefer_local(local: Entity, remote: Entity) -> Entity:
    return local


def prefer_remote(local: Entity, remote: Entity) -> Entity:
    return remote


def resolver_for_policy(policy: str) -> ConflictResolver | None:
    """Map a configured policy name to a resolver. "manual" means none."""
    policies: dict[str, ConflictResolver | None] = {
        "manual": None,
        "local": prefer_local,
        "remote": prefer_remote,
    }
    if policy not in policies:
        raise ValueError(f"Unknown conflict policy: {policy!r} (expected one of {list(policies)})")
    return policies[policy]


# ── Results ───────────────────────────────────────────────────


@dataclass
class KindResult:
    """Outcome for one entity kind."""

    uploaded: int = 0
    downloaded: int = 0
    conflicts: int = 0
    downloads: list[Entity] = field(default_factory=list)
    # Entities produced by the conflict resolver that differ from the local copy
    resolved: list[Entity] = field(default_factory=list)

    def to_dict(self) -> dict[str, int]:
        return {
            "uploaded": self.uploaded,
            "downloaded": self.downloaded,
            "conflicts": self.conflicts,
        }


@dataclass
class SyncResult:
    """Outcome of a full sync round. Never persisted."""

    success: bool
    notes: KindResult = field(default_factory=KindResult)
    tasks: KindResult = field(default_factory=KindResult)
    error: str | None = None

    def for_kind(self, kind: EntityKind) -> KindResult:
        return self.notes if kind is EntityKind.NOTE else self.tasks

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "notes": self.notes.to_dict(),
            "tasks": self.tasks.to_dict(),
        }
        if self.error:
            data["error"] = self.error
        return data


# ── Classification ────────────────────────────────────────────


@dataclass
class SyncPlan:
    uploads: list[Entity] = field(default_factory=list)
    downloads: list[Entity] = field(default_factory=list)
    conflicts: list[tuple[Entity, Entity]] = field(default_factory=list)


def classify(
    local: dict[str, Entity],
    remote: dict[str, Entity],
    synced: dict[str, SyncEntry],
) -> SyncPlan:
    """Decide the fate of every entity from the three snapshots.

    Local pass: missing remotely -> upload. Changed locally since the last
    sync -> upload if newer than remote, conflict if the timestamps differ
    otherwise. Remote pass: missing locally -> download. Changed remotely
    since the last sync and newer than local -> download, unless the ID is
    already a conflict. Equal timestamps never conflict.
    """
    plan = SyncPlan()
    conflicted: set[str] = set()

    for entity_id in sorted(local):
        mine = local[entity_id]
        theirs = remote.get(entity_id)
        entry = synced.get(entity_id)
        if theirs is None:
            plan.uploads.append(mine)
        elif entry is not None and mine.updated_at > entry.updated_at:
            if mine.updated_at > theirs.updated_at:
                plan.uploads.append(mine)
            elif mine.updated_at != theirs.updated_at:
                plan.conflicts.append((mine, theirs))
                conflicted.add(entity_id)

    for entity_id in sorted(remote):
        if entity_id in conflicted:
            continue
        theirs = remote[entity_id]
        mine = local.get(entity_id)
        entry = synced.get(entity_id)
        if mine is None:
            plan.downloads.append(theirs)
        elif (
            entry is not None
            and theirs.updated_at > entry.updated_at
            and theirs.updated_at > mine.updated_at
        ):
            plan.downloads.append(theirs)

    return plan


# ── Engine ────────────────────────────────────────────────────


class MergeEngine:
    """Runs one sync round per entity kind against the remote repository."""

    def __init__(
        self,
        client: GitHubClient,
        metadata_store: MetadataStore,
        max_concurrency: int = 8,
    ) -> None:
        self._client = client
        self._metadata_store = metadata_store
        self._max_concurrency = max(1, max_concurrency)

    async def discover(self, kind: EntityKind) -> dict[str, Entity]:
        """Fetch and decode every remote entity of ``kind``, keyed by ID.

        Files that fail to fetch or decode are logged and skipped. A listing
        failure raises RemoteError for the whole kind.
        """
        paths = await self._list_paths(kind)
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def fetch(path: str) -> tuple[str, Entity] | None:
            async with semaphore:
                try:
                    remote = await self._client.read_file(path)
                    if remote is None:
                        return None  # deleted since listing
                    return path, codec.decode(kind, path, remote.content)
                except (RemoteError, DecodeError) as e:
                    logger.warning("Skipping remote %s %s: %s", kind.label, path, e)
                    return None

        fetched = await asyncio.gather(*(fetch(path) for path in paths))

        entities: dict[str, tuple[str, Entity]] = {}
        for item in fetched:
            if item is None:
                continue
            path, entity = item
            seen = entities.get(entity.id)
            if seen is not None:
                logger.warning("Duplicate %s id %s at %s and %s", kind.label, entity.id, seen[0], path)
                if (seen[1].updated_at, seen[0]) > (entity.updated_at, path):
                    continue
            entities[entity.id] = (path, entity)
        return {entity_id: entity for entity_id, (_, entity) in entities.items()}

    async def _list_paths(self, kind: EntityKind) -> list[str]:
        root = kind.value
        suffix = f".{kind.extension}"
        entries = await self._client.list_entries(root)
        paths = [f"{root}/{name}" for name, entry_type in entries if entry_type == "file"]
        months = [name for name, entry_type in entries if entry_type == "dir"]
        listings = await asyncio.gather(
            *(self._client.list_directory(f"{root}/{month}") for month in months)
        )
        for month, names in zip(months, listings):
            paths.extend(f"{root}/{month}/{name}" for name in names)
        return sorted(p for p in paths if p.endswith(suffix))

    async def sync_kind(
        self,
        kind: EntityKind,
        local_entities: Iterable[Entity],
        metadata: SyncMetadata,
        resolver: ConflictResolver | None = None,
    ) -> KindResult:
        """Reconcile one kind. Mutates ``metadata`` and persists it on success."""
        local = {e.id: e for e in local_entities}
        remote = await self.discover(kind)
        synced = metadata.entries(kind)

        plan = classify(local, remote, synced)
        result = KindResult(
            downloaded=len(plan.downloads),
            conflicts=len(plan.conflicts),
            downloads=plan.downloads,
        )

        uploads = list(plan.uploads)
        for mine, theirs in plan.conflicts:
            if resolver is None:
                logger.info("Conflict on %s %s left unresolved", kind.label, mine.id)
                continue
            resolved = await _resolve(resolver, mine, theirs)
            uploads.append(resolved)
            if resolved != mine:
                result.resolved.append(resolved)

        if uploads:
            files = [(codec.remote_path(e), codec.encode(e)) for e in uploads]
            commit = await self._client.write_files_batch(
                files, f"Sync {len(files)} {kind.label}(s)"
            )
            for entity, (path, _) in zip(uploads, files):
                metadata.record(kind, entity.id, entity.updated_at, commit.blob_shas.get(path, ""))
            result.uploaded = len(uploads)

        metadata.last_sync_at = utcnow()
        await self._metadata_store.save(metadata)

        logger.info(
            "Synced %s: %d uploaded, %d downloaded, %d conflict(s)",
            kind.value,
            result.uploaded,
            result.downloaded,
            result.conflicts,
        )
        return result


async def _resolve(resolver: ConflictResolver, local: Entity, remote: Entity) -> Entity:
    resolved = resolver(local, remote)
    if inspect.isawaitable(resolved):
        resolved = await resolved
    if not isinstance(resolved, Entity) or resolved.id != local.id:
        raise SyncError(f"Conflict resolver returned an invalid entity for {local.id}")
    return resolved
