"""Local per-device entity store.

The sync core only needs a keyed collection (get / put / delete / list-all),
described by the ``EntityStore`` protocol. ``LocalEntityStore`` is the default
implementation: one JSON document per kind under the data directory, loaded
into memory at startup and rewritten on every mutation.

Layout:
    ~/.jarvis/data/
    ├── notes.json             # {"<id>": {...note...}}
    ├── tasks.json             # {"<id>": {...task...}}
    └── sync-settings.json     # auto-sync toggle, last sync time
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from jarvis.models import Entity, EntityKind
from jarvis.sync import codec
from jarvis.sync.errors import DecodeError

logger = logging.getLogger(__name__)


@runtime_checkable
class EntityStore(Protocol):
    """Keyed collection of entities owned by this device."""

    def get(self, kind: EntityKind, entity_id: str) -> Entity | None: ...

    def put(self, entity: Entity) -> None: ...

    def delete(self, kind: EntityKind, entity_id: str) -> bool: ...

    def list_all(self, kind: EntityKind) -> list[Entity]: ...


class LocalEntityStore:
    """JSON-file backed EntityStore."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self._entities: dict[EntityKind, dict[str, Entity]] = {
            kind: self._load(kind) for kind in EntityKind
        }

    def _path(self, kind: EntityKind) -> Path:
        return self.root / f"{kind.value}.json"

    def _load(self, kind: EntityKind) -> dict[str, Entity]:
        path = self._path(kind)
        if not path.exists():
            return {}
        raw = json.loads(path.read_text(encoding="utf-8"))
        entities: dict[str, Entity] = {}
        for entity_id, data in raw.items():
            try:
                entities[entity_id] = codec.from_dict(kind, data, str(path))
            except DecodeError as e:
                logger.warning("Skipping unreadable local %s %s: %s", kind.label, entity_id, e)
        return entities

    def _flush(self, kind: EntityKind) -> None:
        data = {
            entity_id: codec.to_dict(entity)
            for entity_id, entity in sorted(self._entities[kind].items())
        }
        path = self._path(kind)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp.replace(path)

    def get(self, kind: EntityKind, entity_id: str) -> Entity | None:
        return self._entities[kind].get(entity_id)

    def put(self, entity: Entity) -> None:
        self._entities[entity.kind][entity.id] = entity
        self._flush(entity.kind)

    def delete(self, kind: EntityKind, entity_id: str) -> bool:
        if self._entities[kind].pop(entity_id, None) is None:
            return False
        self._flush(kind)
        return True

    def list_all(self, kind: EntityKind) -> list[Entity]:
        return sorted(self._entities[kind].values(), key=lambda e: e.created_at)
