from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Protocol

from platformdirs import user_data_dir

from .models import Message

APP_NAME = "pycrush"

logger = logging.getLogger(__name__)


def _sessions_dir() -> Path:
    root = Path(user_data_dir(APP_NAME))
    d = root / "sessions"
    d.mkdir(parents=True, exist_ok=True)
    return d


class MessageStore(Protocol):
    def load_history(self, session_id: str) -> list[Message]: ...
    def append_message(self, session_id: str, message: Message) -> None: ...


class MemoryMessageStore:
    def __init__(self) -> None:
        self._messages: dict[str, list[Message]] = {}
        self._lock = threading.Lock()

    def load_history(self, session_id: str) -> list[Message]:
        with self._lock:
            return list(self._messages.get(session_id, []))

    def append_message(self, session_id: str, message: Message) -> None:
        with self._lock:
            self._messages.setdefault(session_id, []).append(message)


class JsonlMessageStore:
    """One JSONL file per session under the user data dir."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = root or _sessions_dir()
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, session_id: str) -> Path:
        # Child session ids contain "$$"; keep file names portable.
        return self.root / f"{session_id.replace('$', '_')}.jsonl"

    def load_history(self, session_id: str) -> list[Message]:
        path = self.path_for(session_id)
        msgs: list[Message] = []
        if not path.exists():
            return msgs
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                msgs.append(Message(**json.loads(line)))
            except (ValueError, TypeError):
                # A process killed mid-write can leave a partial trailing line.
                logger.warning("skipping corrupt line in %s", path)
                continue
        return msgs

    def append_message(self, session_id: str, message: Message) -> None:
        path = self.path_for(session_id)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(message), ensure_ascii=False) + "\n")
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError:
                pass

    def session_ids(self) -> list[str]:
        return sorted(p.stem for p in self.root.glob("*.jsonl"))
