from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, AsyncIterator, FrozenSet, Set, Tuple

from reminder_scheduler.schemas.reminder_schemas import ReminderableItem

if TYPE_CHECKING:
    from reminder_scheduler.providers.reminder_data_provider import ReminderDataProvider

GuardKey = Tuple[str, int]


class ProcessingGuardSet:
    """
    Keys of the items currently being evaluated inside this process.

    Owned by one scheduler and handed to its scanners, so overlapping scans
    of the same scheduler share it while separate schedulers never do.
    The membership test and the add run without an await in between, which
    keeps acquisition atomic on a single event loop.
    """

    def __init__(self):
        self._keys: Set[GuardKey] = set()

    def try_acquire(self, key: GuardKey) -> bool:
        if key in self._keys:
            return False
        self._keys.add(key)
        return True

    def release(self, key: GuardKey) -> None:
        self._keys.discard(key)

    @asynccontextmanager
    async def claim(self, item_type: str, item_id: int) -> AsyncIterator[bool]:
        """
        Yield True if this caller now owns the key, False if another
        evaluation holds it. An owned key is released on exit whatever happens.
        """
        key = (item_type, item_id)
        acquired = self.try_acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key)

    def snapshot(self) -> FrozenSet[GuardKey]:
        return frozenset(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class DedupGuard:
    """
    At-most-one reminder per item per cadence.

    Layer 1 is the in-process ``ProcessingGuardSet``; layer 2 is the
    persisted notification log, looked up over the profile's lookback so the
    guarantee survives restarts. Only a single scheduler process is assumed:
    two processes could both miss each other's log row and send twice.
    """

    def __init__(self, provider: "ReminderDataProvider", guard_set: ProcessingGuardSet):
        self.provider = provider
        self.guard_set = guard_set

    def claim(self, item: ReminderableItem):
        """In-process layer, see ``ProcessingGuardSet.claim``."""
        return self.guard_set.claim(*item.guard_key)

    async def already_notified(
        self, item: ReminderableItem, now: datetime, lookback: timedelta
    ) -> bool:
        """Persisted layer: a log row newer than ``now - lookback`` exists."""
        return await self.provider.has_recent_notification(
            item_id=item.id, item_type=item.item_type.value, since=now - lookback
        )
