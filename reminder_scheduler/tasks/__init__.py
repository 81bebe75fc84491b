from .periodic import Clock, PeriodicTask, SystemClock
from .reminder_scheduler import (
    ReminderScheduler,
    SchedulerState,
    create_reminder_scheduler,
)

__all__ = [
    "Clock",
    "PeriodicTask",
    "SystemClock",
    "ReminderScheduler",
    "SchedulerState",
    "create_reminder_scheduler",
]
