from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Tuple

from reminder_scheduler.config.settings import Settings
from reminder_scheduler.db.models import ItemType
from reminder_scheduler.schemas.reminder_schemas import ReminderableItem
from reminder_scheduler.services.notifications.dedup import DedupGuard
from reminder_scheduler.services.notifications.dispatcher import (
    DispatchOutcome,
    NotificationDispatcher,
)
from reminder_scheduler.utils.logging import get_logger

if TYPE_CHECKING:
    from reminder_scheduler.providers.reminder_data_provider import ReminderDataProvider

DueItemsQuery = Callable[[datetime, datetime, datetime], Awaitable[List[ReminderableItem]]]

SKIPPED_IN_FLIGHT = "skipped_in_flight"
SKIPPED_ALREADY_NOTIFIED = "skipped_already_notified"
ERRORED = "errored"


@dataclass(frozen=True)
class ScanProfile:
    """Per item type tuning of the window scan"""

    item_type: ItemType
    offset: timedelta
    slack: timedelta
    lookback: timedelta
    query: DueItemsQuery

    def window(self, now: datetime) -> Tuple[datetime, datetime]:
        """Inclusive [start, end] around ``now + offset``"""
        target = now + self.offset
        return target - self.slack, target + self.slack


def build_scan_profiles(
    provider: "ReminderDataProvider", settings: Settings
) -> List[ScanProfile]:
    """Profiles in tick order: tasks, meetings, appointments."""
    slack = timedelta(minutes=settings.WINDOW_SLACK_MINUTES)
    return [
        ScanProfile(
            item_type=ItemType.TASK,
            offset=timedelta(hours=24),
            slack=slack,
            lookback=timedelta(hours=23),
            query=provider.list_due_tasks,
        ),
        ScanProfile(
            item_type=ItemType.MEETING,
            offset=timedelta(hours=1),
            slack=slack,
            lookback=timedelta(hours=2),
            query=provider.list_due_meetings,
        ),
        ScanProfile(
            item_type=ItemType.APPOINTMENT,
            offset=timedelta(hours=24),
            slack=slack,
            lookback=timedelta(hours=23),
            query=provider.list_due_appointments,
        ),
    ]


class WindowScanner:
    """Selects the items of one type that are due for a reminder and dispatches them"""

    def __init__(
        self,
        profile: ScanProfile,
        dedup: DedupGuard,
        dispatcher: NotificationDispatcher,
    ):
        self.profile = profile
        self.dedup = dedup
        self.dispatcher = dispatcher

    @property
    def item_type(self) -> ItemType:
        return self.profile.item_type

    async def scan(self, now: datetime) -> Dict[str, Any]:
        """
        Run one scan for this profile at ``now``.

        A failure of the window query propagates to the caller. A failure while
        evaluating a single item is logged and counted, and the scan moves on.

        Returns:
            Summary dict with the window and a count per outcome
        """
        logger = get_logger()
        window_start, window_end = self.profile.window(now)

        items = await self.profile.query(window_start, window_end, now)

        summary: Dict[str, Any] = {
            "item_type": self.item_type.value,
            "window_start": window_start.isoformat(),
            "window_end": window_end.isoformat(),
            "found": len(items),
            DispatchOutcome.SENT.value: 0,
            DispatchOutcome.SUPPRESSED.value: 0,
            DispatchOutcome.FAILED.value: 0,
            SKIPPED_IN_FLIGHT: 0,
            SKIPPED_ALREADY_NOTIFIED: 0,
            ERRORED: 0,
        }

        for item in items:
            try:
                result = await self.evaluate(item, now)
            except Exception as e:
                logger.error(
                    "Error evaluating reminder",
                    item_type=self.item_type.value,
                    item_id=item.id,
                    error=str(e),
                )
                result = ERRORED
            summary[result] += 1

        logger.info(
            "Reminder scan completed",
            item_type=self.item_type.value,
            found=summary["found"],
            sent=summary[DispatchOutcome.SENT.value],
            skipped_already_notified=summary[SKIPPED_ALREADY_NOTIFIED],
        )
        return summary

    async def evaluate(self, item: ReminderableItem, now: datetime) -> str:
        """Run one item through both dedup layers and, if clear, the dispatcher."""
        async with self.dedup.claim(item) as acquired:
            if not acquired:
                return SKIPPED_IN_FLIGHT

            if await self.dedup.already_notified(item, now, self.profile.lookback):
                return SKIPPED_ALREADY_NOTIFIED

            outcome = await self.dispatcher.dispatch(item, now)
            return outcome.value
