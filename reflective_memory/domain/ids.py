"""Memory id allocation.

The positive signed 64-bit space is split into thirds. Knowledge memories
take the second third and reflection memories the third, so a raw payload
id alone tells which kind of memory it belongs to, even when both
collections live on a backend that deduplicates ids globally. The lowest
third is left unused.

Ids are drawn at random inside the range from a generator seeded with the
wall clock. Collisions are improbable but possible; an insert that fails
because of one may be retried with a fresh id.
"""
from __future__ import annotations

import random
import time
from typing import Optional, Tuple

from .models import CollectionKind

MAX_MEMORY_ID = 2 ** 63 - 1
_THIRD = MAX_MEMORY_ID // 3

KNOWLEDGE_ID_RANGE: Tuple[int, int] = (_THIRD + 1, 2 * _THIRD)
REFLECTION_ID_RANGE: Tuple[int, int] = (2 * _THIRD + 1, 3 * _THIRD)


def is_valid_id(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 < value <= MAX_MEMORY_ID


def memory_kind_for_id(memory_id: int) -> Optional[CollectionKind]:
    """Return the memory kind whose range contains ``memory_id``, if any."""
    low, high = KNOWLEDGE_ID_RANGE
    if low <= memory_id <= high:
        return CollectionKind.KNOWLEDGE
    low, high = REFLECTION_ID_RANGE
    if low <= memory_id <= high:
        return CollectionKind.REFLECTION
    return None


class MemoryIdAllocator:
    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random(time.time_ns())

    def next_knowledge_id(self) -> int:
        return self._rng.randint(*KNOWLEDGE_ID_RANGE)

    def next_reflection_id(self) -> int:
        return self._rng.randint(*REFLECTION_ID_RANGE)
