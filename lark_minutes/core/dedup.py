"""Bounded cache of webhook event ids that have already been admitted."""

from __future__ import annotations

from collections import OrderedDict

DEFAULT_MAX_EVENTS = 1000


class ProcessedEventCache:
    """Insertion-ordered set of event ids, oldest evicted first once full.

    Admission is checked and recorded synchronously, so a redelivery that
    arrives while the first delivery is still in flight is rejected.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_EVENTS) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._ids: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def admit(self, event_id: str) -> bool:
        """Record ``event_id``. Returns False if it was already present."""
        if event_id in self._ids:
            return False
        self._ids[event_id] = None
        while len(self._ids) > self._max_size:
            self._ids.popitem(last=False)
        return True

    def clear(self) -> None:
        self._ids.clear()
