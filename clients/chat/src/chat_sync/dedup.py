from __future__ import annotations

from typing import Set


class MessageDeduplicator:
    """Remembers which remote message ids were already surfaced for one conversation."""

    def __init__(self) -> None:
        self._seen: Set[str] = set()

    def admit(self, message_id: str) -> bool:
        if message_id in self._seen:
            return False
        self._seen.add(message_id)
        return True

    def reset(self) -> None:
        self._seen.clear()

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)
