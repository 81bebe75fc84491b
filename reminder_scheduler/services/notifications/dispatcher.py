import enum
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from reminder_scheduler.config.settings import Settings
from reminder_scheduler.schemas.reminder_schemas import ReminderableItem
from reminder_scheduler.services.notifications.templates import (
    ReminderTemplateRegistry,
)
from reminder_scheduler.utils.logging import get_logger

if TYPE_CHECKING:
    from reminder_scheduler.providers.reminder_data_provider import ReminderDataProvider


class DispatchOutcome(str, enum.Enum):
    SENT = "sent"
    SUPPRESSED = "suppressed"
    FAILED = "failed"


class MessageTransport(Protocol):
    async def send_message(self, to: str, subject: str, text: str, html: str) -> None:
        ...


class NotificationDispatcher:
    """Gates on user preferences, renders, sends and records one reminder"""

    def __init__(
        self,
        provider: "ReminderDataProvider",
        transport: MessageTransport,
        settings: Settings,
    ):
        self.provider = provider
        self.transport = transport
        self.settings = settings

    async def dispatch(self, item: ReminderableItem, now: datetime) -> DispatchOutcome:
        """
        Send the reminder for ``item`` unless the owner has switched reminders off.

        Nothing is logged for SUPPRESSED or FAILED, so the item stays eligible
        and may fire on a later tick once preferences change or the transport
        recovers. After a successful send the log write is best effort: if it
        fails the message is still reported as SENT.

        Args:
            item: The due item, already past both dedup layers
            now: Tick time, also used as the log entry's sent_at

        Returns:
            DispatchOutcome
        """
        logger = get_logger()
        item_type = item.item_type.value

        try:
            preferences = await self.provider.get_user_preferences(item.owner.user_id)
        except Exception as e:
            logger.error(
                "Failed to load notification preferences",
                item_type=item_type,
                item_id=item.id,
                user_id=item.owner.user_id,
                error=str(e),
            )
            return DispatchOutcome.FAILED

        if not preferences.allows_email:
            logger.debug(
                "Reminder suppressed by user preferences",
                item_type=item_type,
                item_id=item.id,
                user_id=item.owner.user_id,
            )
            return DispatchOutcome.SUPPRESSED

        template = ReminderTemplateRegistry.create_template(
            item.item_type, self.settings
        )
        message = template.render(item, now)

        try:
            await self.transport.send_message(
                item.owner.email, message.subject, message.text, message.html
            )
        except Exception as e:
            logger.error(
                "Failed to send reminder",
                item_type=item_type,
                item_id=item.id,
                error=str(e),
            )
            return DispatchOutcome.FAILED

        try:
            await self.provider.record_notification(item.id, item_type, now)
        except Exception as e:
            logger.warning(
                "[LOG FAILURE] Reminder was sent but could not be recorded",
                item_type=item_type,
                item_id=item.id,
                error=str(e),
            )

        logger.info("Reminder sent", item_type=item_type, item_id=item.id)
        return DispatchOutcome.SENT
