"""
FIFO waiting queue.

Matching is purely by arrival order: whichever two participants are oldest
when a dequeue fires become partners.
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Tuple


class WaitingQueue:
    def __init__(self) -> None:
        # dicts keep insertion order and give O(1) membership and removal
        self._entries: Dict[str, None] = {}

    def push(self, participant_id: str) -> bool:
        if participant_id in self._entries:
            return False
        self._entries[participant_id] = None
        return True

    def dequeue_two(self) -> Optional[Tuple[str, str]]:
        if len(self._entries) < 2:
            return None
        iterator = iter(self._entries)
        first = next(iterator)
        second = next(iterator)
        del self._entries[first]
        del self._entries[second]
        return first, second

    def remove(self, participant_id: str) -> bool:
        if participant_id not in self._entries:
            return False
        del self._entries[participant_id]
        return True

    def snapshot(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())
