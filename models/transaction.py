from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Transaction:
    """A ledger entry or, when is_recurring_definition is set, an obligation template."""
    id: int
    account_id: int
    direction: str              # 'income' | 'expense'
    amount: float
    timestamp: datetime
    title: str = ""
    note: Optional[str] = None
    category_id: Optional[int] = None
    is_recurring_definition: bool = False
    frequency: Optional[str] = None     # 'daily' | 'weekly' | 'monthly' | 'yearly'
    next_due_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    excluded_from_balance: bool = False
    allow_notifications: bool = True
    is_ended: bool = False
    is_deleted: bool = False
    source_definition_id: Optional[int] = None
    cycle_due_at: Optional[datetime] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def label(self) -> str:
        return self.title or self.note or f"Obligation #{self.id}"

    def state(self, as_of: datetime) -> str:
        """Lifecycle state of a definition: 'scheduled' | 'due' | 'ended'.

        Occurrences are always 'materialized'.
        """
        if not self.is_recurring_definition:
            return "materialized"
        if self.is_ended or self.next_due_at is None:
            return "ended"
        if self.end_at is not None and self.next_due_at > self.end_at:
            return "ended"
        return "due" if self.next_due_at <= as_of else "scheduled"
