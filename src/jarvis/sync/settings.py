"""Client-side sync settings kept outside the entity store."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from jarvis.models import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "sync-settings.json"


@dataclass
class SyncSettings:
    auto_sync: bool = False
    last_sync_at: datetime | None = None


class SettingsStore:
    """JSON file holding the auto-sync toggle and last successful sync time."""

    def __init__(self, root: Path) -> None:
        self.path = root / SETTINGS_FILENAME

    def load(self) -> SyncSettings:
        if not self.path.exists():
            return SyncSettings()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            last = data.get("lastSyncAt")
            return SyncSettings(
                auto_sync=bool(data.get("autoSync", False)),
                last_sync_at=parse_timestamp(last) if last else None,
            )
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Ignoring unreadable sync settings %s: %s", self.path, e)
            return SyncSettings()

    def save(self, settings: SyncSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "autoSync": settings.auto_sync,
            "lastSyncAt": format_timestamp(settings.last_sync_at) if settings.last_sync_at else None,
        }
        self.path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
