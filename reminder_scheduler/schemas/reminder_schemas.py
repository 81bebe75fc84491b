from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from reminder_scheduler.db.models import ItemType


class ItemOwner(BaseModel):
    user_id: int = Field(..., description="Owning user ID")
    email: str = Field(..., description="Address reminders are sent to")
    name: Optional[str] = Field(None, description="Display name")

    @property
    def greeting_name(self) -> str:
        return self.name or "there"


class ReminderableItem(BaseModel):
    """A task, meeting or appointment as seen by the scheduler."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Item ID within its own table")
    item_type: ItemType = Field(..., description="Which table the item comes from")
    title: str = Field(..., description="Item title")
    description: Optional[str] = Field(None, description="Free-text description")
    trigger_time: datetime = Field(
        ..., description="Due date for tasks, start time for meetings and appointments"
    )
    end_time: Optional[datetime] = Field(None, description="End time, if any")
    location: Optional[str] = Field(None, description="Location or meeting link")
    priority: Optional[str] = Field(None, description="Task priority")
    completed: bool = Field(False, description="Only tasks can be completed")

    is_recurring: bool = Field(False, description="True for recurring templates")
    recurrence_pattern: Optional[str] = Field(
        None, description="Recurrence step unit, only constrained on recurring rows"
    )
    recurrence_interval: Optional[int] = Field(None, description="Pattern step")
    recurrence_end_date: Optional[datetime] = Field(
        None, description="No occurrence is eligible after this instant"
    )
    parent_id: Optional[int] = Field(
        None, description="Template ID when this item is a materialized instance"
    )

    owner: ItemOwner

    @property
    def guard_key(self) -> tuple[str, int]:
        return (self.item_type.value, self.id)


class UserNotificationPreferences(BaseModel):
    notifications_enabled: bool = Field(True, description="Master switch")
    email_notifications_enabled: bool = Field(True, description="E-mail switch")
    show_notifications: bool = Field(
        True, description="In-app display only, ignored by the scheduler"
    )

    @property
    def allows_email(self) -> bool:
        return self.notifications_enabled and self.email_notifications_enabled


class RenderedMessage(BaseModel):
    subject: str
    text: str
    html: str
