from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import InstrumentedAttribute
from sqlalchemy.sql.elements import ColumnElement

from reminder_scheduler.schemas.reminder_schemas import ReminderableItem
from reminder_scheduler.utils.datetime_utils import to_naive_utc, to_utc


class RecurrenceFilter:
    """
    Decides whether an item may be evaluated for a reminder at all.

    A recurring template (is_recurring set, no parent) only describes the
    pattern and is never notified; its materialized instances are. Any item
    whose recurrence_end_date lies before ``now`` is excluded, recurring or not.
    """

    @staticmethod
    def is_template(is_recurring: bool, parent_id: Optional[int]) -> bool:
        return bool(is_recurring) and parent_id is None

    @staticmethod
    def has_ended(recurrence_end_date: Optional[datetime], now: datetime) -> bool:
        if recurrence_end_date is None:
            return False
        return to_utc(recurrence_end_date) < to_utc(now)

    @classmethod
    def is_eligible(cls, item: ReminderableItem, now: datetime) -> bool:
        if cls.is_template(item.is_recurring, item.parent_id):
            return False
        return not cls.has_ended(item.recurrence_end_date, now)

    @staticmethod
    def eligibility_clause(
        model, parent_column: InstrumentedAttribute, now: datetime
    ) -> ColumnElement[bool]:
        """SQL form of ``is_eligible`` for a model using RecurrenceMixin."""
        naive_now = to_naive_utc(now)
        return and_(
            or_(parent_column.is_not(None), model.is_recurring.is_(False)),
            or_(
                model.recurrence_end_date.is_(None),
                model.recurrence_end_date >= naive_now,
            ),
        )


def is_recurrence_eligible(item: ReminderableItem, now: datetime) -> bool:
    """Shortcut for ``RecurrenceFilter.is_eligible``."""
    return RecurrenceFilter.is_eligible(item, now)
