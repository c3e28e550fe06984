"""In-memory store used for development without Redis and in tests.

A single re-entrant lock serializes every read-check-write so the
compare-and-swap in ``transition`` holds across request threads.
"""
import threading
from typing import Dict, List, Optional, Tuple

from lendingdesk.core.errors import StorageFault
from lendingdesk.core.logging import get_logger
from lendingdesk.domain.item import Item, LendingState
from lendingdesk.domain.transaction import TransactionRecord
from lendingdesk.domain.user import User
from lendingdesk.infrastructure.store import LibraryStore, TransitionOutcome

logger = get_logger(__name__)


class MemoryLibraryStore(LibraryStore):
    """Process-local store. Data is lost on restart."""

    def __init__(self):
        self._lock = threading.RLock()
        self._users: Dict[str, User] = {}
        self._user_ids_by_name: Dict[str, str] = {}
        self._items: Dict[str, Item] = {}
        # Append order is the ledger order
        self._ledger: List[TransactionRecord] = []

    def create_user_if_absent(self, user: User) -> bool:
        with self._lock:
            if user.username in self._user_ids_by_name:
                return False
            self._users[user.id] = user
            self._user_ids_by_name[user.username] = user.id
            return True

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def find_user_by_username(self, username: str) -> Optional[User]:
        with self._lock:
            user_id = self._user_ids_by_name.get(username)
            return self._users.get(user_id) if user_id else None

    def create_item(self, item: Item) -> None:
        with self._lock:
            self._items[item.id] = item

    def get_item(self, item_id: str) -> Optional[Item]:
        with self._lock:
            return self._items.get(item_id)

    def list_items(self) -> List[Item]:
        with self._lock:
            items = list(self._items.values())
        # Ties on created_at: later insertions first
        return sorted(reversed(items), key=lambda item: item.created_at, reverse=True)

    def delete_item(self, item_id: str) -> Optional[int]:
        with self._lock:
            if self._items.pop(item_id, None) is None:
                return None
            kept = [record for record in self._ledger if record.item_id != item_id]
            removed = len(self._ledger) - len(kept)
            self._ledger = kept
            return removed

    def transition(
        self,
        item_id: str,
        expected: LendingState,
        record: TransactionRecord,
    ) -> Tuple[TransitionOutcome, Optional[Item]]:
        with self._lock:
            current = self._items.get(item_id)
            if current is None:
                return TransitionOutcome.NOT_FOUND, None
            if current.lending_state != expected:
                return TransitionOutcome.CONFLICT, None

            updated = current.model_copy(update={"lending_state": record.type.resulting_state})
            self._items[item_id] = updated
            try:
                self._append(record)
            except Exception as e:
                self._items[item_id] = current
                logger.error(
                    "Ledger append failed, state transition rolled back",
                    extra={"item_id": item_id},
                    exc_info=True,
                )
                raise StorageFault("Ledger append failed") from e
            return TransitionOutcome.APPLIED, updated

    def _append(self, record: TransactionRecord) -> None:
        self._ledger.append(record)

    def list_transactions(self, user_id: Optional[str] = None) -> List[TransactionRecord]:
        with self._lock:
            records = [
                record for record in self._ledger
                if user_id is None or record.user_id == user_id
            ]
        records.reverse()
        return records

    def last_transaction(self, item_id: str) -> Optional[TransactionRecord]:
        with self._lock:
            for record in reversed(self._ledger):
                if record.item_id == item_id:
                    return record
        return None

    def ping(self) -> bool:
        return True
