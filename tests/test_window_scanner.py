import pytest
import asyncio
from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock, patch

from reminder_scheduler.db.models import ItemType
from reminder_scheduler.services.notifications.dedup import DedupGuard
from reminder_scheduler.services.notifications.dispatcher import (
    DispatchOutcome,
    NotificationDispatcher,
)
from reminder_scheduler.services.notifications.scanner import (
    WindowScanner,
    build_scan_profiles,
)
from reminder_scheduler.utils.errors import DatabaseError


pytestmark = pytest.mark.integration


def _make_scanner(provider, transport, settings, guard_set, item_type: ItemType):
    profiles = {p.item_type: p for p in build_scan_profiles(provider, settings)}
    return WindowScanner(
        profiles[item_type],
        DedupGuard(provider, guard_set),
        NotificationDispatcher(provider, transport, settings),
    )


@pytest.fixture
def task_scanner(provider, transport, test_settings, guard_set):
    return _make_scanner(provider, transport, test_settings, guard_set, ItemType.TASK)


@pytest.fixture
def meeting_scanner(provider, transport, test_settings, guard_set):
    return _make_scanner(
        provider, transport, test_settings, guard_set, ItemType.MEETING
    )


@pytest.fixture
def appointment_scanner(provider, transport, test_settings, guard_set):
    return _make_scanner(
        provider, transport, test_settings, guard_set, ItemType.APPOINTMENT
    )


class TestScanProfiles:
    """Test per-type offsets, slack and lookback."""

    def test_profiles_are_built_in_tick_order(self, provider, test_settings):
        profiles = build_scan_profiles(provider, test_settings)
        assert [p.item_type for p in profiles] == [
            ItemType.TASK,
            ItemType.MEETING,
            ItemType.APPOINTMENT,
        ]

    def test_windows_surround_the_offset(self, provider, test_settings, now):
        """Window is now + offset widened by five minutes on each side."""
        task, meeting, appointment = build_scan_profiles(provider, test_settings)

        assert task.window(now) == (
            now + timedelta(hours=23, minutes=55),
            now + timedelta(hours=24, minutes=5),
        )
        assert meeting.window(now) == (
            now + timedelta(minutes=55),
            now + timedelta(minutes=65),
        )
        assert appointment.window(now) == task.window(now)

    def test_lookbacks(self, provider, test_settings):
        task, meeting, appointment = build_scan_profiles(provider, test_settings)
        assert task.lookback == timedelta(hours=23)
        assert meeting.lookback == timedelta(hours=2)
        assert appointment.lookback == timedelta(hours=23)

    def test_slack_follows_settings(self, provider, test_settings):
        test_settings.WINDOW_SLACK_MINUTES = 10
        profiles = build_scan_profiles(provider, test_settings)
        assert all(p.slack == timedelta(minutes=10) for p in profiles)


class TestTaskWindowScan:
    """Test task selection, dispatch and the persisted dedup layer."""

    @pytest.mark.asyncio
    async def test_task_just_outside_window_is_excluded(
        self, task_scanner, make_task, transport, now
    ):
        """A task due after now + 24h05m is not a candidate yet."""
        await make_task(timedelta(hours=24, minutes=5, seconds=1))

        summary = await task_scanner.scan(now)

        assert summary["found"] == 0
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_window_bounds_are_inclusive(
        self, task_scanner, make_task, transport, now
    ):
        """Items exactly on either edge of the window are included."""
        await make_task(timedelta(hours=23, minutes=55), title="Lower edge")
        await make_task(timedelta(hours=24, minutes=5), title="Upper edge")

        summary = await task_scanner.scan(now)

        assert summary["found"] == 2
        assert summary["sent"] == 2
        assert len(transport.sent) == 2

    @pytest.mark.asyncio
    async def test_task_in_window_is_sent_and_logged(
        self, task_scanner, make_task, provider, transport, now
    ):
        """A task due in 23h58m is dispatched and a log entry is written."""
        task = await make_task(timedelta(hours=23, minutes=58))

        summary = await task_scanner.scan(now)

        assert summary["found"] == 1
        assert summary["sent"] == 1
        assert transport.sent[0]["to"] == "alice@example.com"
        assert transport.sent[0]["subject"] == "Task Reminder: Submit quarterly report"
        assert await provider.has_recent_notification(
            task.id, "task", now - timedelta(seconds=1)
        )

    @pytest.mark.asyncio
    async def test_rescan_five_minutes_later_is_skipped(
        self, task_scanner, make_task, transport, now
    ):
        """The log entry from the first scan is inside the 23h lookback."""
        await make_task(timedelta(hours=24, minutes=2))

        first = await task_scanner.scan(now)
        second = await task_scanner.scan(now + timedelta(minutes=5))

        assert first["sent"] == 1
        assert second["found"] == 1
        assert second["skipped_already_notified"] == 1
        assert second["sent"] == 0
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_old_log_entry_outside_lookback_does_not_block(
        self, task_scanner, make_task, make_log_entry, transport, now
    ):
        """An entry older than the lookback belongs to an earlier cadence."""
        task = await make_task(timedelta(hours=24))
        await make_log_entry(task.id, "task", now - timedelta(hours=23))

        summary = await task_scanner.scan(now)

        assert summary["sent"] == 1
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_log_entry_of_other_type_does_not_block(
        self, task_scanner, make_task, make_log_entry, now
    ):
        task = await make_task(timedelta(hours=24))
        await make_log_entry(task.id, "meeting", now - timedelta(minutes=5))

        summary = await task_scanner.scan(now)

        assert summary["sent"] == 1

    @pytest.mark.asyncio
    async def test_completed_task_is_excluded(self, task_scanner, make_task, now):
        await make_task(timedelta(hours=24), completed=True)

        summary = await task_scanner.scan(now)

        assert summary["found"] == 0

    @pytest.mark.asyncio
    async def test_concurrent_scans_dispatch_once(
        self, task_scanner, make_task, transport, guard_set, now
    ):
        """Two overlapping scans of the same data send exactly one reminder."""
        await make_task(timedelta(hours=24))

        first, second = await asyncio.gather(
            task_scanner.scan(now), task_scanner.scan(now)
        )

        assert first["sent"] + second["sent"] == 1
        skipped = (
            first["skipped_in_flight"]
            + second["skipped_in_flight"]
            + first["skipped_already_notified"]
            + second["skipped_already_notified"]
        )
        assert skipped == 1
        assert len(transport.sent) == 1
        assert len(guard_set) == 0

    @pytest.mark.asyncio
    async def test_summary_reports_window(self, task_scanner, now):
        summary = await task_scanner.scan(now)

        assert summary["item_type"] == "task"
        assert summary["window_start"] == (
            now + timedelta(hours=23, minutes=55)
        ).isoformat()
        assert summary["window_end"] == (now + timedelta(hours=24, minutes=5)).isoformat()
        for key in (
            "sent",
            "suppressed",
            "failed",
            "skipped_in_flight",
            "skipped_already_notified",
            "errored",
        ):
            assert summary[key] == 0


class TestMeetingAndAppointmentScan:
    """Test the other two profiles against the same pipeline."""

    @pytest.mark.asyncio
    async def test_meeting_starting_in_58_minutes_is_sent(
        self, meeting_scanner, make_meeting, transport, now
    ):
        await make_meeting(
            timedelta(minutes=58), location="https://meet.example.com/abc"
        )

        summary = await meeting_scanner.scan(now)

        assert summary["sent"] == 1
        assert transport.sent[0]["subject"] == "Meeting Reminder: Sprint planning"
        assert "https://meet.example.com/abc" in transport.sent[0]["text"]

    @pytest.mark.asyncio
    async def test_meeting_in_24_hours_is_not_a_candidate(
        self, meeting_scanner, make_meeting, now
    ):
        await make_meeting(timedelta(hours=24))

        summary = await meeting_scanner.scan(now)

        assert summary["found"] == 0

    @pytest.mark.asyncio
    async def test_appointment_in_window_is_sent(
        self, appointment_scanner, make_appointment, transport, now
    ):
        await make_appointment(timedelta(hours=24, minutes=2))

        summary = await appointment_scanner.scan(now)

        assert summary["sent"] == 1
        assert transport.sent[0]["subject"] == "Appointment Reminder: Dentist"


class TestInFlightGuard:
    """Test the in-process dedup layer and error containment."""

    @pytest.mark.asyncio
    async def test_in_flight_key_skips_without_log_query(
        self, appointment_scanner, make_appointment, provider, guard_set, transport, now
    ):
        """A key held by an overlapping evaluation short-circuits the log lookup."""
        appointment = await make_appointment(timedelta(hours=24))
        assert guard_set.try_acquire(("appointment", appointment.id))

        with patch.object(
            provider, "has_recent_notification", new=AsyncMock(return_value=False)
        ) as log_lookup:
            summary = await appointment_scanner.scan(now)

        assert summary["skipped_in_flight"] == 1
        assert summary["sent"] == 0
        log_lookup.assert_not_awaited()
        assert transport.sent == []
        # The other holder still owns the key
        assert ("appointment", appointment.id) in guard_set

    @pytest.mark.asyncio
    async def test_guard_is_released_after_unexpected_error(
        self, task_scanner, make_task, guard_set, now
    ):
        """A failing item is counted as errored and its key is released."""
        await make_task(timedelta(hours=24), title="First")
        await make_task(timedelta(hours=24), title="Second")

        task_scanner.dispatcher.dispatch = AsyncMock(
            side_effect=[RuntimeError("boom"), DispatchOutcome.SENT]
        )

        summary = await task_scanner.scan(now)

        assert summary["found"] == 2
        assert summary["errored"] == 1
        assert summary["sent"] == 1
        assert len(guard_set) == 0

    @pytest.mark.asyncio
    async def test_guard_is_released_after_send_failure(
        self, task_scanner, make_task, guard_set, transport, provider, now
    ):
        task = await make_task(timedelta(hours=24))
        transport.send_error = ConnectionError("smtp down")

        summary = await task_scanner.scan(now)

        assert summary["failed"] == 1
        assert len(guard_set) == 0
        assert not await provider.has_recent_notification(
            task.id, "task", now - timedelta(hours=23)
        )

    @pytest.mark.asyncio
    async def test_query_failure_propagates(self, task_scanner, now):
        """A failing window query aborts the scan for the caller to contain."""
        failing_query = AsyncMock(side_effect=DatabaseError("database is locked"))
        task_scanner.profile = replace(task_scanner.profile, query=failing_query)

        with pytest.raises(DatabaseError):
            await task_scanner.scan(now)
