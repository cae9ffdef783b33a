"""
Pair registry: the single source of truth for who is whose partner.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from .errors import PairingError


class PairRegistry:
    """Symmetric partner map; both directions change together."""

    def __init__(self) -> None:
        self._partners: Dict[str, str] = {}

    def pair(self, first: str, second: str) -> None:
        if first == second:
            raise PairingError(f"participant {first} cannot be paired with itself")
        for participant_id in (first, second):
            if participant_id in self._partners:
                raise PairingError(f"participant {participant_id} is already paired")
        self._partners[first] = second
        self._partners[second] = first

    def partner_of(self, participant_id: str) -> Optional[str]:
        return self._partners.get(participant_id)

    def unpair(self, participant_id: str) -> Optional[str]:
        """Remove the pair containing ``participant_id`` and return the former partner."""

        partner_id = self._partners.pop(participant_id, None)
        if partner_id is None:
            return None
        self._partners.pop(partner_id, None)
        return partner_id

    def pairs(self) -> List[Tuple[str, str]]:
        seen = set()
        result = []
        for left, right in self._partners.items():
            if left in seen:
                continue
            seen.update((left, right))
            result.append((left, right))
        return result

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._partners

    def __len__(self) -> int:
        return len(self._partners) // 2
