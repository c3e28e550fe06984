"""Ledger queries and consistency audit.

The ledger does no authorization of its own; routes check the gate before
calling ``list_all`` or ``audit``.
"""
import logging
from typing import Dict, List, Optional, Tuple

from lendingdesk.core.logging import get_logger, LogTimer
from lendingdesk.domain.item import Item, LendingState
from lendingdesk.domain.transaction import Inconsistency, LedgerEntry, TransactionRecord
from lendingdesk.domain.user import User
from lendingdesk.infrastructure.store import LibraryStore

logger = get_logger(__name__)


class LedgerService:

    def __init__(self, store: LibraryStore):
        self.store = store

    def list_for_user(self, user_id: str) -> List[LedgerEntry]:
        """A member's own records, newest first, with item name and author."""
        with LogTimer(logger, "list_transactions:user"):
            records = self.store.list_transactions(user_id=user_id)
        items: Dict[str, Optional[Item]] = {}
        return [self._enrich(record, items) for record in records]

    def list_all(self) -> List[LedgerEntry]:
        """Every record, newest first, with item details and username."""
        with LogTimer(logger, "list_transactions:all"):
            records = self.store.list_transactions()
        items: Dict[str, Optional[Item]] = {}
        users: Dict[str, Optional[User]] = {}
        return [self._enrich(record, items, users) for record in records]

    def _enrich(
        self,
        record: TransactionRecord,
        items: Dict[str, Optional[Item]],
        users: Optional[Dict[str, Optional[User]]] = None,
    ) -> LedgerEntry:
        # A dangling reference leaves the field empty instead of failing the query
        if record.item_id not in items:
            items[record.item_id] = self.store.get_item(record.item_id)
        item = items[record.item_id]

        entry = LedgerEntry(
            **record.model_dump(),
            item_name=item.name if item else None,
            item_author=item.author if item else None,
        )

        if users is not None:
            if record.user_id not in users:
                users[record.user_id] = self.store.get_user(record.user_id)
            user = users[record.user_id]
            entry.username = user.username if user else None

        return entry

    def audit(self) -> List[Inconsistency]:
        """Find items whose lending state disagrees with their ledger.

        An item should be Issued exactly when its latest record is Issued,
        and Available when it has no records. Findings are logged, never
        repaired here.
        """
        findings = []
        with LogTimer(logger, "ledger_audit", level=logging.INFO):
            for item in self.store.list_items():
                item, last, expected = self._check(item)
                if item is None or item.lending_state == expected:
                    continue
                # A transition may have landed between the two reads
                item, last, expected = self._check(self.store.get_item(item.id))
                if item is None or item.lending_state == expected:
                    continue
                finding = Inconsistency(
                    item_id=item.id,
                    item_name=item.name,
                    lending_state=item.lending_state,
                    expected_state=expected,
                    last_transaction=last,
                )
                logger.warning(
                    f"Ledger inconsistency: item is {item.lending_state.value}, "
                    f"ledger says {expected.value}",
                    extra={"item_id": item.id},
                )
                findings.append(finding)
        return findings

    def _check(
        self, item: Optional[Item]
    ) -> Tuple[Optional[Item], Optional[TransactionRecord], LendingState]:
        if item is None:
            return None, None, LendingState.AVAILABLE
        last = self.store.last_transaction(item.id)
        expected = last.type.resulting_state if last else LendingState.AVAILABLE
        return item, last, expected
