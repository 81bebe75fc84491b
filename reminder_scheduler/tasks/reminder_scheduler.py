import asyncio
import enum
from datetime import timedelta
from typing import Any, Dict, List, Optional

from reminder_scheduler.config.settings import Settings
from reminder_scheduler.db.session import create_session_factory
from reminder_scheduler.providers.reminder_data_provider import ReminderDataProvider
from reminder_scheduler.services.email_service import EmailService
from reminder_scheduler.services.notifications.dedup import (
    DedupGuard,
    ProcessingGuardSet,
)
from reminder_scheduler.services.notifications.dispatcher import (
    NotificationDispatcher,
)
from reminder_scheduler.services.notifications.scanner import (
    ScanProfile,
    WindowScanner,
    build_scan_profiles,
)
from reminder_scheduler.tasks.periodic import Clock, PeriodicTask, SystemClock
from reminder_scheduler.utils.context import new_run_id, set_run_id
from reminder_scheduler.utils.logging import get_logger


class SchedulerState(str, enum.Enum):
    BOOTSTRAPPING = "bootstrapping"
    RUNNING = "running"
    STOPPED = "stopped"


class ReminderScheduler:
    """
    Owns the reminder loop of one process.

    Lifecycle:
    1. ``bootstrap_until_ready`` prepares the notification log, checks the
       transport and runs one retention cleanup, retrying on failure
    2. ``start`` schedules the reminder tick and the daily log cleanup
    3. ``stop`` cancels both

    Every dependency is injected so tests can drive the loop with a fake
    clock, an in-memory database and a recording transport.
    """

    def __init__(
        self,
        provider: ReminderDataProvider,
        transport: EmailService,
        settings: Settings,
        clock: Optional[Clock] = None,
        guard_set: Optional[ProcessingGuardSet] = None,
        profiles: Optional[List[ScanProfile]] = None,
    ):
        self.provider = provider
        self.transport = transport
        self.settings = settings
        self.clock = clock or SystemClock()
        self.guard_set = guard_set or ProcessingGuardSet()
        self.state = SchedulerState.BOOTSTRAPPING

        dedup = DedupGuard(provider, self.guard_set)
        dispatcher = NotificationDispatcher(provider, transport, settings)
        if profiles is None:
            profiles = build_scan_profiles(provider, settings)
        self.scanners = [
            WindowScanner(profile, dedup, dispatcher) for profile in profiles
        ]

        self._periodic_tasks: List[PeriodicTask] = []

    # Bootstrap

    async def bootstrap(self) -> None:
        """
        One bootstrap attempt. Raises on failure of the log table setup or the
        transport checks; a failing cleanup is only logged.
        """
        logger = get_logger()

        await self.provider.ensure_notification_log()
        logger.info("Notification log ready")

        self.transport.validate()
        if self.settings.EMAIL_VERIFY_ON_STARTUP:
            await self.transport.verify()

        try:
            await self.cleanup_notification_logs()
        except Exception as e:
            logger.error("Initial notification log cleanup failed", error=str(e))

    async def bootstrap_until_ready(self) -> int:
        """
        Retry ``bootstrap`` every BOOTSTRAP_RETRY_MINUTES until it succeeds.

        Returns:
            Number of attempts it took
        """
        logger = get_logger()
        retry_seconds = self.settings.BOOTSTRAP_RETRY_MINUTES * 60
        attempt = 0

        while True:
            attempt += 1
            try:
                await self.bootstrap()
                logger.info("Scheduler bootstrap complete", attempts=attempt)
                return attempt
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Scheduler bootstrap failed, retrying",
                    attempt=attempt,
                    retry_in_seconds=retry_seconds,
                    error=str(e),
                )
                await self.clock.sleep(retry_seconds)

    # Periodic work

    async def run_tick(self) -> Dict[str, Any]:
        """
        Scan tasks, meetings and appointments in that order.

        A scan that fails as a whole is logged and recorded in the result;
        the remaining scans still run.

        Returns:
            Dict with success flag, run_id and one entry per scan
        """
        run_id = new_run_id("reminder_tick")
        set_run_id(run_id)
        logger = get_logger()
        logger.info("Reminder tick started")

        scans: List[Dict[str, Any]] = []
        success = True

        for scanner in self.scanners:
            now = self.clock.now()
            try:
                scans.append(await scanner.scan(now))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                success = False
                logger.opt(exception=True).error(
                    "Reminder scan failed",
                    item_type=scanner.item_type.value,
                    error=str(e),
                )
                scans.append(
                    {
                        "item_type": scanner.item_type.value,
                        "error": str(e),
                    }
                )

        logger.info("Reminder tick finished", success=success)
        return {"success": success, "run_id": run_id, "scans": scans}

    async def cleanup_notification_logs(self) -> int:
        """Delete log rows older than LOG_RETENTION_DAYS; returns the row count."""
        cutoff = self.clock.now() - timedelta(days=self.settings.LOG_RETENTION_DAYS)
        deleted = await self.provider.delete_notifications_before(cutoff)
        get_logger().info(
            "Notification log cleanup complete",
            deleted_count=deleted,
            cutoff=cutoff.isoformat(),
        )
        return deleted

    # Lifecycle

    def start(self) -> None:
        """Schedule the tick and the log cleanup. Call after bootstrap."""
        if self.state == SchedulerState.RUNNING:
            return

        self._periodic_tasks = [
            PeriodicTask(
                name="reminder_tick",
                interval_seconds=self.settings.CHECK_INTERVAL_MINUTES * 60,
                func=self.run_tick,
                clock=self.clock,
            ),
            PeriodicTask(
                name="notification_log_cleanup",
                interval_seconds=self.settings.LOG_CLEANUP_INTERVAL_HOURS * 3600,
                func=self.cleanup_notification_logs,
                clock=self.clock,
                wait_first=True,
            ),
        ]
        for task in self._periodic_tasks:
            task.start()

        self.state = SchedulerState.RUNNING
        get_logger().info(
            "Reminder scheduler running",
            check_interval_minutes=self.settings.CHECK_INTERVAL_MINUTES,
            cleanup_interval_hours=self.settings.LOG_CLEANUP_INTERVAL_HOURS,
        )

    async def stop(self) -> None:
        tasks, self._periodic_tasks = self._periodic_tasks, []
        for task in tasks:
            await task.stop()
        self.state = SchedulerState.STOPPED
        get_logger().info("Reminder scheduler stopped")

    async def run_forever(self) -> None:
        """Bootstrap, start, then park until cancelled."""
        await self.bootstrap_until_ready()
        self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()


def create_reminder_scheduler(
    settings: Settings, clock: Optional[Clock] = None
) -> ReminderScheduler:
    """Wire the scheduler to the database and SMTP server named in ``settings``."""
    return ReminderScheduler(
        provider=ReminderDataProvider(session_factory=create_session_factory(settings)),
        transport=EmailService(settings),
        settings=settings,
        clock=clock,
    )
