"""Entry point: python -m jarvis <command>

- status:                 Show sync target, auto-sync toggle and last sync
- validate:               Check that the GitHub repository is reachable
- sync:                   Sync local notes/tasks with GitHub, apply downloads
- autosync on|off:        Toggle sync after every local change
- add-note TITLE [BODY]:  Create a note
- add-task TITLE [PRIO]:  Create a task (priority low|medium|high)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from jarvis.config import JarvisConfig, load_config
from jarvis.models import format_timestamp

USAGE = """\
Usage: python -m jarvis <command>
  status                  Show sync configuration and state
  validate                Check access to the GitHub repository
  sync                    Sync notes and tasks now
  autosync on|off         Toggle sync after local changes
  add-note TITLE [BODY]   Create a note
  add-task TITLE [PRIO]   Create a task"""


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _usage() -> None:
    print(USAGE)
    sys.exit(1)


async def _run(config: JarvisConfig, cmd: str, args: list[str]) -> int:
    from jarvis.core import Jarvis

    try:
        jarvis = Jarvis(config)
    except ValueError as e:
        print(f"jarvis: {e}", file=sys.stderr)
        return 1
    service = jarvis.sync_service
    try:
        if cmd == "status":
            last = service.last_sync_at
            print(f"Remote:    {service.remote_target or '(not configured)'}")
            print(f"Enabled:   {service.is_enabled}")
            print(f"Auto-sync: {service.auto_sync}")
            print(f"Last sync: {format_timestamp(last) if last else 'never'}")
            return 0

        if cmd == "validate":
            ok = await service.validate()
            print("Repository reachable" if ok else "Repository NOT reachable")
            return 0 if ok else 1

        if cmd == "sync":
            result = await jarvis.sync()
            print(json.dumps(result.to_dict(), indent=2))
            return 0 if result.success else 1

        if cmd == "autosync" and args and args[0] in ("on", "off"):
            service.set_auto_sync(args[0] == "on")
            print(f"Auto-sync {'enabled' if service.auto_sync else 'disabled'}")
            return 0

        if cmd == "add-note" and args:
            note = await jarvis.add_note(args[0], args[1] if len(args) > 1 else "")
            print(note.id)
            return 0

        if cmd == "add-task" and args:
            try:
                task = await jarvis.add_task(args[0], args[1] if len(args) > 1 else "medium")
            except ValueError as e:
                print(e, file=sys.stderr)
                return 1
            print(task.id)
            return 0
    finally:
        await jarvis.close()

    print(USAGE)
    return 1


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if not cmd:
        _usage()

    config = load_config()
    _setup_logging(config.log_level)
    sys.exit(asyncio.run(_run(config, cmd, sys.argv[2:])))


if __name__ == "__main__":
    main()
