from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

TRIGGER_KINDS = ("daily", "weekly", "monthly", "yearly", "interval")


@dataclass
class NotificationContent:
    title: str
    body: str
    data: dict = field(default_factory=dict)


@dataclass
class Trigger:
    """Shape of a repeating notification trigger.

    daily   -> hour, minute
    weekly  -> weekday (0=Mon..6=Sun), hour, minute
    monthly -> day, hour, minute
    yearly  -> month, day, hour, minute
    interval-> seconds (repeats every N seconds from scheduling time)

    start, when set, is the earliest moment the trigger may fire.
    """
    kind: str
    hour: int = 0
    minute: int = 0
    weekday: Optional[int] = None
    day: Optional[int] = None
    month: Optional[int] = None
    seconds: Optional[int] = None
    repeats: bool = True
    start: Optional[datetime] = None


@dataclass
class ScheduledNotification:
    identifier: str
    content: NotificationContent
    trigger: Optional[Trigger]          # None = deliver immediately, once
    scheduled_at: datetime
    next_fire_at: Optional[datetime] = None
