"""In-memory bounded conversation log (volatile, not persisted)."""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Tuple

from .errors import InvalidInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Message:
    """One conversational turn. Its role is positional, see protocol.assign_role."""
    index: int
    text: str

    @property
    def length(self) -> int:
        return len(self.text)


# -----------------------------
# MessageLog
# -----------------------------
class MessageLog:
    """Ordered conversation entries bounded by their total character count.

    After every append the oldest entries are evicted until the total length is
    at or below ``max_total_length``, or only the newest entry is left. Eviction
    is silent. Indices keep increasing across evictions and are never reused.
    """

    def __init__(self, max_total_length: int = 30000) -> None:
        if max_total_length <= 0:
            raise ValueError("max_total_length must be positive")
        self.max_total_length = max_total_length
        self._entries: Deque[Message] = deque()
        self._total = 0
        self._next_index = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def total_length(self) -> int:
        return self._total

    def append(self, text: Optional[str]) -> Message:
        if not text:
            raise InvalidInputError("Message text must be a non-empty string")

        msg = Message(index=self._next_index, text=text)
        self._next_index += 1
        self._entries.append(msg)
        self._total += msg.length
        self._evict()
        return msg

    def snapshot(self) -> Tuple[Message, ...]:
        return tuple(self._entries)

    def texts(self) -> List[str]:
        return [m.text for m in self._entries]

    def _evict(self) -> None:
        while self._total > self.max_total_length and len(self._entries) > 1:
            removed = self._entries.popleft()
            self._total -= removed.length
            logger.debug("Evicted message %d (%d chars)", removed.index, removed.length)


# -----------------------------
# Conversation
# -----------------------------
class Conversation:
    """Conversation state owned by whoever serves it.

    Bundles the log with the lock that serializes turns: a direct prompt or a
    pipeline batch holds ``lock`` from the prompt append until the response is
    appended, so turns never interleave.
    """

    def __init__(self, context: str, *, max_total_length: int = 30000) -> None:
        self.log = MessageLog(max_total_length)
        self.log.append(context)
        self.lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self.lock.locked()

    def snapshot(self) -> Tuple[Message, ...]:
        return self.log.snapshot()

    def texts(self) -> List[str]:
        return self.log.texts()
