from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from platformdirs import user_data_dir

from .models import Event

APP_NAME = "pycrush"

logger = logging.getLogger(__name__)


def _events_dir() -> Path:
    root = Path(user_data_dir(APP_NAME))
    d = root / "events"
    d.mkdir(parents=True, exist_ok=True)
    return d


@dataclass
class EventStore:
    """JSONL event log, one file per session.

    Used as an event bus sink; text deltas are skipped to keep the log small.
    """

    root: Path

    @staticmethod
    def open(root: Path | None = None) -> "EventStore":
        root = root or _events_dir()
        root.mkdir(parents=True, exist_ok=True)
        return EventStore(root=root)

    def path_for(self, session_id: str) -> Path:
        return self.root / f"{session_id.replace('$', '_')}.jsonl"

    def __call__(self, event: Event) -> None:
        if event.type.value == "text.delta":
            return
        with self.path_for(event.session_id).open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), ensure_ascii=False, default=str) + "\n")

    def iter_events(self, session_id: str) -> Iterable[dict[str, Any]]:
        path = self.path_for(session_id)
        if not path.exists():
            return []
        out: list[dict[str, Any]] = []
        for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
            if not line.strip():
                continue
            try:
                out.append(json.loads(line))
            except ValueError:
                logger.debug("skipping corrupt event line in %s", path)
                continue
        return out
