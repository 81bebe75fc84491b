from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, and_, delete, literal
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reminder_scheduler.db.models import (
    Appointment,
    ItemType,
    Meeting,
    NotificationLog,
    Task,
    User,
    UserSettings,
)
from reminder_scheduler.db.session import AsyncSessionLocal
from reminder_scheduler.schemas.reminder_schemas import (
    ItemOwner,
    ReminderableItem,
    UserNotificationPreferences,
)
from reminder_scheduler.services.notifications.recurrence import RecurrenceFilter
from reminder_scheduler.utils.datetime_utils import from_naive_utc, to_naive_utc
from reminder_scheduler.utils.errors import DatabaseError


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    return from_naive_utc(dt) if dt is not None and dt.tzinfo is None else dt


class ReminderDataProvider:
    """
    Read access to work items and preferences, plus the notification log.

    Every call opens its own short-lived session so that a failed log write
    never rolls back or poisons the reads made for the same item.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal):
        self.session_factory = session_factory

    # Work items

    async def list_due_tasks(
        self, window_start: datetime, window_end: datetime, now: datetime
    ) -> List[ReminderableItem]:
        """Tasks due inside [window_start, window_end] that are open and recurrence-eligible."""
        stmt = (
            select(Task, User)
            .join(User, Task.user_id == User.id)
            .where(
                and_(
                    Task.due_date.between(
                        to_naive_utc(window_start), to_naive_utc(window_end)
                    ),
                    Task.completed.is_(False),
                    RecurrenceFilter.eligibility_clause(Task, Task.parent_task_id, now),
                )
            )
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()

        return [
            ReminderableItem(
                id=task.id,
                item_type=ItemType.TASK,
                title=task.title,
                description=task.description,
                trigger_time=_aware(task.due_date),
                priority=task.priority,
                completed=task.completed,
                is_recurring=task.is_recurring,
                recurrence_pattern=task.recurrence_pattern,
                recurrence_interval=task.recurrence_interval,
                recurrence_end_date=_aware(task.recurrence_end_date),
                parent_id=task.parent_task_id,
                owner=ItemOwner(user_id=user.id, email=user.email, name=user.name),
            )
            for task, user in rows
        ]

    async def list_due_meetings(
        self, window_start: datetime, window_end: datetime, now: datetime
    ) -> List[ReminderableItem]:
        """Meetings starting inside [window_start, window_end] that are recurrence-eligible."""
        stmt = (
            select(Meeting, User)
            .join(User, Meeting.user_id == User.id)
            .where(
                and_(
                    Meeting.start_time.between(
                        to_naive_utc(window_start), to_naive_utc(window_end)
                    ),
                    RecurrenceFilter.eligibility_clause(
                        Meeting, Meeting.parent_meeting_id, now
                    ),
                )
            )
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()

        return [
            ReminderableItem(
                id=meeting.id,
                item_type=ItemType.MEETING,
                title=meeting.title,
                description=meeting.description,
                trigger_time=_aware(meeting.start_time),
                end_time=_aware(meeting.end_time),
                location=meeting.location,
                is_recurring=meeting.is_recurring,
                recurrence_pattern=meeting.recurrence_pattern,
                recurrence_interval=meeting.recurrence_interval,
                recurrence_end_date=_aware(meeting.recurrence_end_date),
                parent_id=meeting.parent_meeting_id,
                owner=ItemOwner(user_id=user.id, email=user.email, name=user.name),
            )
            for meeting, user in rows
        ]

    async def list_due_appointments(
        self, window_start: datetime, window_end: datetime, now: datetime
    ) -> List[ReminderableItem]:
        """Appointments starting inside [window_start, window_end] that are recurrence-eligible."""
        stmt = (
            select(Appointment, User)
            .join(User, Appointment.user_id == User.id)
            .where(
                and_(
                    Appointment.start_time.between(
                        to_naive_utc(window_start), to_naive_utc(window_end)
                    ),
                    RecurrenceFilter.eligibility_clause(
                        Appointment, Appointment.parent_appointment_id, now
                    ),
                )
            )
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()

        return [
            ReminderableItem(
                id=appointment.id,
                item_type=ItemType.APPOINTMENT,
                title=appointment.title,
                description=appointment.description,
                trigger_time=_aware(appointment.start_time),
                end_time=_aware(appointment.end_time),
                location=appointment.location,
                is_recurring=appointment.is_recurring,
                recurrence_pattern=appointment.recurrence_pattern,
                recurrence_interval=appointment.recurrence_interval,
                recurrence_end_date=_aware(appointment.recurrence_end_date),
                parent_id=appointment.parent_appointment_id,
                owner=ItemOwner(user_id=user.id, email=user.email, name=user.name),
            )
            for appointment, user in rows
        ]

    # Preferences

    async def get_user_preferences(self, user_id: int) -> UserNotificationPreferences:
        """Return the user's switches, fully enabled when no settings row exists yet."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(UserSettings).where(UserSettings.user_id == user_id)
            )
            user_settings = result.scalar_one_or_none()

        if user_settings is None:
            return UserNotificationPreferences()

        return UserNotificationPreferences(
            notifications_enabled=user_settings.notifications_enabled,
            email_notifications_enabled=user_settings.email_notifications_enabled,
            show_notifications=user_settings.show_notifications,
        )

    # Notification log

    async def ensure_notification_log(self) -> None:
        """Create notification_log and its lookup index if missing."""
        try:
            async with self.session_factory() as db:
                connection = await db.connection()
                await connection.run_sync(
                    NotificationLog.__table__.create, checkfirst=True
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to create notification_log table: {e}",
                error_code="DB_SCHEMA_ERROR",
            ) from e

    async def has_recent_notification(
        self, item_id: int, item_type: str, since: datetime
    ) -> bool:
        """True when a log row for the item exists with sent_at strictly after ``since``."""
        stmt = (
            select(literal(1))
            .select_from(NotificationLog)
            .where(
                and_(
                    NotificationLog.item_id == item_id,
                    NotificationLog.item_type == item_type,
                    NotificationLog.sent_at > to_naive_utc(since),
                )
            )
            .limit(1)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return result.first() is not None

    async def record_notification(
        self, item_id: int, item_type: str, sent_at: datetime
    ) -> NotificationLog:
        async with self.session_factory() as db:
            entry = NotificationLog(
                item_id=item_id, item_type=item_type, sent_at=to_naive_utc(sent_at)
            )
            db.add(entry)
            await db.commit()
            return entry

    async def delete_notifications_before(self, cutoff: datetime) -> int:
        """Delete log rows with sent_at older than ``cutoff``; returns the row count."""
        async with self.session_factory() as db:
            result = await db.execute(
                delete(NotificationLog).where(
                    NotificationLog.sent_at < to_naive_utc(cutoff)
                )
            )
            await db.commit()
            return result.rowcount or 0
