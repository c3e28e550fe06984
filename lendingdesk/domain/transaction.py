"""Domain models for the transaction ledger."""
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel

from lendingdesk.domain.item import Item, LendingState


class TransactionType(str, Enum):
    ISSUED = "Issued"
    RETURNED = "Returned"

    @property
    def resulting_state(self) -> LendingState:
        """Lending state an item is in right after a record of this type."""
        if self is TransactionType.ISSUED:
            return LendingState.ISSUED
        return LendingState.AVAILABLE


class TransactionRecord(BaseModel):
    """Immutable audit entry for one issue or return event.

    ``item_id`` stays meaningful after the item is deleted only until the
    cascade removes the record along with the item.
    """
    id: str
    user_id: str
    item_id: str
    type: TransactionType
    timestamp: datetime


class LedgerEntry(TransactionRecord):
    """A transaction record enriched for display.

    Enrichment fields are None when the referenced item or user no longer
    exists.
    """
    item_name: Optional[str] = None
    item_author: Optional[str] = None
    username: Optional[str] = None


class TransitionResult(BaseModel):
    """Outcome of a successful issue or return."""
    item: Item
    transaction: TransactionRecord


class Inconsistency(BaseModel):
    """An item whose lending state disagrees with its latest ledger record."""
    item_id: str
    item_name: str
    lending_state: LendingState
    expected_state: LendingState
    last_transaction: Optional[TransactionRecord] = None
