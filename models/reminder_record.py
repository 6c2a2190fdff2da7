from dataclasses import dataclass
from datetime import datetime

from utils.date_helpers import format_datetime, parse_datetime


@dataclass
class ReminderRecord:
    obligation_id: int
    notification_id: str
    next_due_at: datetime       # due date the reminder was scheduled for
    scheduled_at: datetime

    def to_dict(self) -> dict:
        return {
            "obligation_id": self.obligation_id,
            "notification_id": self.notification_id,
            "next_due_at": format_datetime(self.next_due_at),
            "scheduled_at": format_datetime(self.scheduled_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReminderRecord | None":
        """Returns None for malformed entries."""
        try:
            due = parse_datetime(data["next_due_at"])
            scheduled = parse_datetime(data["scheduled_at"])
            if due is None or scheduled is None:
                return None
            return cls(
                obligation_id=int(data["obligation_id"]),
                notification_id=str(data["notification_id"]),
                next_due_at=due,
                scheduled_at=scheduled,
            )
        except (KeyError, TypeError, ValueError):
            return None
