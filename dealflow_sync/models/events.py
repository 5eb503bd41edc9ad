"""
Data models for row-level change events from the change notification bus.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ChangeTable(str, Enum):
    """Tables whose changes the sync layer cares about."""

    TRANSCRIPTS = "transcripts"
    MEETINGS = "meetings"
    DEALS = "deals"


class ChangeType(str, Enum):
    """Kind of row change."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """
    One row-level change.

    ``record`` is the new row for INSERT/UPDATE and the old row for DELETE.
    """

    table: ChangeTable
    event_type: ChangeType
    account_id: str = Field(min_length=1)
    deal_id: Optional[str] = None
    record: dict[str, Any] = Field(default_factory=dict)

    @property
    def meeting_id(self) -> Optional[str]:
        """Meeting the changed row refers to, if any."""
        value = self.record.get("meeting_id")
        return str(value) if value else None

    @property
    def row_deal_id(self) -> Optional[str]:
        """Deal the changed row refers to, falling back to the event's deal."""
        if self.table == ChangeTable.DEALS:
            value = self.record.get("deal_id") or self.record.get("id")
        else:
            value = self.record.get("deal_id")
        return str(value) if value else self.deal_id

    def matches(self, account_id: str, deal_id: Optional[str] = None) -> bool:
        """Apply a subscription's account (and optional deal) filter."""
        if self.account_id != account_id:
            return False
        if deal_id is not None and self.row_deal_id != deal_id:
            return False
        return True
