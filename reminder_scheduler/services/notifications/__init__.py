from .recurrence import RecurrenceFilter, is_recurrence_eligible
from .templates import ReminderTemplateRegistry, BaseReminderTemplate
from .dedup import DedupGuard, ProcessingGuardSet
from .dispatcher import DispatchOutcome, NotificationDispatcher
from .scanner import ScanProfile, WindowScanner, build_scan_profiles

__all__ = [
    "RecurrenceFilter",
    "is_recurrence_eligible",
    "ReminderTemplateRegistry",
    "BaseReminderTemplate",
    "DedupGuard",
    "ProcessingGuardSet",
    "DispatchOutcome",
    "NotificationDispatcher",
    "ScanProfile",
    "WindowScanner",
    "build_scan_profiles",
]
