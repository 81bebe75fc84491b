from abc import ABC, abstractmethod
from datetime import datetime
from html import escape
from typing import Callable, Dict, Optional

from reminder_scheduler.config.settings import Settings
from reminder_scheduler.db.models import ItemType
from reminder_scheduler.schemas.reminder_schemas import (
    ReminderableItem,
    RenderedMessage,
)
from reminder_scheduler.utils.datetime_utils import format_reminder_datetime, to_utc
from reminder_scheduler.utils.logging import get_logger

logger = get_logger()

RELATIVE_TIME_STYLE = "font-style: italic; color: #555555; font-weight: normal;"

EMAIL_STYLES = """
    body { margin: 0; padding: 0; font-family: 'Segoe UI', 'Helvetica Neue', Helvetica, Arial, sans-serif; background-color: #f8f9fa; color: #333333; line-height: 1.6; }
    .email-container { max-width: 600px; margin: 20px auto; background-color: #ffffff; border-radius: 12px; overflow: hidden; box-shadow: 0 4px 16px rgba(0, 0, 0, 0.05); }
    .email-header { background: linear-gradient(to right, #fef3c7, #fde68a); padding: 24px 0; text-align: center; border-bottom: 1px solid #f2f2f2; }
    .brand-text { font-size: 24px; font-weight: 800; color: #92400e; letter-spacing: 0.5px; margin-top: 8px; }
    .email-content { padding: 32px; line-height: 1.7; font-size: 16px; color: #374151; }
    .email-content h1 { color: #1f2937; font-size: 24px; margin-top: 0; margin-bottom: 20px; border-bottom: 2px solid #f8f9fa; padding-bottom: 10px; }
    .email-content a { color: #f59e0b; text-decoration: none; font-weight: 500; }
    .details-box { background-color: #f9fafb; border-left: 4px solid #f59e0b; border-radius: 6px; padding: 18px; margin: 24px 0; }
    .button { display: inline-block; background: linear-gradient(to right, #f59e0b, #d97706); color: #ffffff !important; padding: 12px 24px; border-radius: 6px; text-decoration: none !important; font-weight: 600; margin-top: 12px; }
    .email-footer { background-color: #f9fafb; padding: 24px; text-align: center; font-size: 13px; color: #6b7280; border-top: 1px solid #f2f2f2; }
    .footer-link { color: #9ca3af; text-decoration: underline; }
"""


def describe_time_until(target: datetime, now: datetime) -> str:
    """
    Human readable distance from ``now`` to ``target``, e.g. "in 1 day" or
    "in about 23 hours". Returns "now past due" when target is not in the future.
    """
    seconds = (to_utc(target) - to_utc(now)).total_seconds()
    if seconds <= 0:
        return "now past due"

    minutes = round(seconds / 60)
    if minutes < 1:
        return "in less than a minute"
    if minutes < 45:
        return f"in {minutes} minute{'s' if minutes != 1 else ''}"
    if minutes < 90:
        return "in about 1 hour"

    hours = round(minutes / 60)
    if minutes < 24 * 60:
        return f"in about {hours} hours"
    if minutes < 42 * 60:
        return "in 1 day"

    days = round(minutes / (24 * 60))
    return f"in {days} days"


def is_link(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower().startswith(("http://", "https://"))


class BaseReminderTemplate(ABC):
    """Renders subject, plain text and HTML for one item type"""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def app_name(self) -> str:
        return self.settings.APP_NAME

    @property
    def base_url(self) -> str:
        return self.settings.base_client_url

    def section_link(self, section: str) -> str:
        return f"{self.base_url}/#{section}"

    @abstractmethod
    def render(self, item: ReminderableItem, now: datetime) -> RenderedMessage:
        """Build the message for ``item`` as seen at ``now``"""
        pass

    def wrap_html(self, title: str, content_html: str, now: datetime) -> str:
        """Place ``content_html`` inside the shared e-mail layout"""
        app_name = escape(self.app_name)
        settings_link = self.section_link("settings-notifications")
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{escape(title)}</title>
  <style>{EMAIL_STYLES}</style>
</head>
<body>
  <div class="email-container">
    <div class="email-header">
      <div class="brand-text">{app_name}</div>
    </div>
    <div class="email-content">
      {content_html}
    </div>
    <div class="email-footer">
      <p>This is an automated message from {app_name}. Please do not reply.</p>
      <p>You're receiving this because notifications are enabled in your
        <a href="{settings_link}" target="_blank" class="footer-link">notification settings</a>.
      </p>
      <p>&copy; {now.year} {app_name}. All rights reserved.</p>
    </div>
  </div>
</body>
</html>
"""


class TaskReminderTemplate(BaseReminderTemplate):
    def render(self, item: ReminderableItem, now: datetime) -> RenderedMessage:
        recipient = item.owner.greeting_name
        formatted_due = format_reminder_datetime(item.trigger_time)
        relative = describe_time_until(item.trigger_time, now)
        task_link = self.section_link("tasks")

        subject = f"Task Reminder: {item.title}"
        content_html = f"""
      <h1>Task Reminder</h1>
      <p>Hi {escape(recipient)},</p>
      <p>Just a friendly reminder that your task is due
        <strong style="{RELATIVE_TIME_STYLE}">{relative}</strong>:
      </p>
      <div class="details-box">
        <p><strong>Task:</strong> {escape(item.title)}</p>
        <p><strong>Due Date:</strong> {formatted_due}
          <span style="{RELATIVE_TIME_STYLE}">({relative})</span>
        </p>
      </div>
      <p>Stay focused and get it done!</p>
      <p style="text-align: center;">
        <a href="{task_link}" target="_blank" class="button">View Task</a>
      </p>
      <p>Best,</p>
      <p>The {escape(self.app_name)} Team</p>
"""
        text = (
            f"Hi {recipient},\n\n"
            f"Task Reminder: {item.title}\n"
            f"Due: {formatted_due} ({relative})\n"
            f"View Task: {task_link}\n\n"
            f"Stay focused!\n- The {self.app_name} Team"
        )
        return RenderedMessage(
            subject=subject, text=text, html=self.wrap_html(subject, content_html, now)
        )


class MeetingReminderTemplate(BaseReminderTemplate):
    def render(self, item: ReminderableItem, now: datetime) -> RenderedMessage:
        recipient = item.owner.greeting_name
        formatted_start = format_reminder_datetime(item.trigger_time)
        meetings_link = self.section_link("meetings")
        location = item.location.strip() if item.location else None

        subject = f"Meeting Reminder: {item.title}"

        location_html = ""
        if location and is_link(location):
            location_html = (
                f'<p><strong>Link/Location:</strong> <a href="{escape(location)}" '
                f'target="_blank">{escape(location)}</a></p>'
            )
        elif location:
            location_html = f"<p><strong>Link/Location:</strong> {escape(location)}</p>"

        if location and is_link(location):
            action_html = (
                f'<p style="text-align: center;"><a href="{escape(location)}" '
                f'target="_blank" class="button">Join Meeting</a></p>'
            )
            action_text = f"Join Link: {location}\n"
        else:
            action_html = (
                f'<p style="text-align: center;"><a href="{meetings_link}" '
                f'target="_blank" class="button">View Meetings</a></p>'
            )
            action_text = f"View Meetings: {meetings_link}\n"

        content_html = f"""
      <h1>Meeting Reminder</h1>
      <p>Hi {escape(recipient)},</p>
      <p>This is a reminder for your upcoming meeting:</p>
      <div class="details-box">
        <p><strong>Meeting:</strong> {escape(item.title)}</p>
        <p><strong>Starts:</strong> {formatted_start}</p>
        {location_html}
      </div>
      {action_html}
      <p>Please be prepared and join on time.</p>
      <p>Best,</p>
      <p>The {escape(self.app_name)} Team</p>
"""
        location_text = (
            f"Location: {location}\n" if location and not is_link(location) else ""
        )
        text = (
            f"Hi {recipient},\n\n"
            f"Meeting Reminder: {item.title}\n"
            f"Starts: {formatted_start}\n"
            f"{location_text}"
            f"{action_text}\n"
            f"Please be prepared.\n- The {self.app_name} Team"
        )
        return RenderedMessage(
            subject=subject, text=text, html=self.wrap_html(subject, content_html, now)
        )


class AppointmentReminderTemplate(BaseReminderTemplate):
    def render(self, item: ReminderableItem, now: datetime) -> RenderedMessage:
        recipient = item.owner.greeting_name
        formatted_start = format_reminder_datetime(item.trigger_time)
        appointments_link = self.section_link("appointments")
        location = item.location.strip() if item.location else None

        subject = f"Appointment Reminder: {item.title}"
        location_text = f"Location: {location}\n" if location else ""
        location_html = (
            f"<p><strong>Location:</strong> {escape(location)}</p>" if location else ""
        )
        content_html = f"""
      <h1>Appointment Reminder</h1>
      <p>Hi {escape(recipient)},</p>
      <p>This is a reminder for your upcoming appointment:</p>
      <div class="details-box">
        <p><strong>Appointment:</strong> {escape(item.title)}</p>
        <p><strong>Date &amp; Time:</strong> {formatted_start}</p>
        {location_html}
      </div>
      <p style="text-align: center;">
        <a href="{appointments_link}" target="_blank" class="button">View Appointment</a>
      </p>
      <p>We look forward to seeing you!</p>
      <p>Best,</p>
      <p>The {escape(self.app_name)} Team</p>
"""
        text = (
            f"Hi {recipient},\n\n"
            f"Appointment Reminder: {item.title}\n"
            f"Date & Time: {formatted_start}\n"
            f"{location_text}"
            f"\nView Appointment: {appointments_link}\n\n"
            f"We look forward to seeing you!\n- The {self.app_name} Team"
        )
        return RenderedMessage(
            subject=subject, text=text, html=self.wrap_html(subject, content_html, now)
        )


class ReminderTemplateRegistry:
    """Registry for reminder template creation"""

    # Map item types to template factories
    _factories: Dict[ItemType, Callable[[Settings], BaseReminderTemplate]] = {
        ItemType.TASK: TaskReminderTemplate,
        ItemType.MEETING: MeetingReminderTemplate,
        ItemType.APPOINTMENT: AppointmentReminderTemplate,
    }

    @classmethod
    def create_template(
        cls, item_type: ItemType, settings: Settings
    ) -> BaseReminderTemplate:
        """Create template instance for an item type"""
        try:
            factory = cls._factories.get(ItemType(item_type))
        except ValueError:
            factory = None
        if factory is None:
            raise ValueError(f"Unknown notification type: {item_type}")
        return factory(settings)

    @classmethod
    def register_template(
        cls,
        item_type: ItemType,
        factory: Callable[[Settings], BaseReminderTemplate],
    ):
        """Register a custom factory function for an item type"""
        cls._factories[item_type] = factory
        logger.info(f"Registered reminder template for item type: {item_type.value}")

    @classmethod
    def is_registered(cls, item_type: ItemType) -> bool:
        """Check if an item type has a template"""
        return item_type in cls._factories
