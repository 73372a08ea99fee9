"""Bounded log of recently received raw messages (newest first).

Every entry gets a ``seq`` that only grows, so a reader that remembers the
last ``seq`` it saw can ask for just the newer entries.  ``clear`` bumps
``epoch`` so such a reader can tell that its view was wiped.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Any

from .constants import MESSAGE_LOG_SIZE


@dataclass(frozen=True, slots=True)
class LoggedMessage:
    seq: int
    topic: str
    payload: str
    received_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "topic": self.topic,
            "payload": self.payload,
            "received_at": self.received_at,
        }


class MessageLog:
    def __init__(self, maxlen: int = MESSAGE_LOG_SIZE) -> None:
        self._entries: deque[LoggedMessage] = deque(maxlen=max(1, int(maxlen)))
        self.last_seq = 0
        self.epoch = 0

    def record(self, topic: str, payload: str, received_at: float | None = None) -> LoggedMessage:
        self.last_seq += 1
        entry = LoggedMessage(
            seq=self.last_seq,
            topic=topic,
            payload=payload,
            received_at=time.time() if received_at is None else received_at,
        )
        self._entries.appendleft(entry)
        return entry

    def recent(self, limit: int | None = None) -> list[LoggedMessage]:
        entries = list(self._entries)
        if limit is not None:
            entries = entries[: max(0, limit)]
        return entries

    def since(self, seq: int, limit: int | None = None) -> list[LoggedMessage]:
        """Entries newer than *seq*, newest first, at most *limit* of them."""
        cap = len(self._entries) if limit is None else max(0, limit)
        newer: list[LoggedMessage] = []
        for entry in self._entries:
            if entry.seq <= seq or len(newer) >= cap:
                break
            newer.append(entry)
        return newer

    def clear(self) -> None:
        self._entries.clear()
        self.epoch += 1

    def __len__(self) -> int:
        return len(self._entries)
