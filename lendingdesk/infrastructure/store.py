"""Storage contract shared by the Redis and in-memory backends.

One store holds users, catalog items and the transaction ledger. The only
way to change an item's lending state is ``transition``, which checks the
expected state, writes the new state and appends the ledger record as one
atomic step.
"""
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Tuple

from lendingdesk.core.config import settings
from lendingdesk.core.errors import StorageFault
from lendingdesk.core.logging import get_logger
from lendingdesk.domain.item import Item, LendingState
from lendingdesk.domain.transaction import TransactionRecord
from lendingdesk.domain.user import User

logger = get_logger(__name__)


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


class LibraryStore(ABC):
    """Identity, catalog and ledger storage."""

    # Identity

    @abstractmethod
    def create_user_if_absent(self, user: User) -> bool:
        """Store ``user`` unless the username is taken. Returns False if taken."""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    def find_user_by_username(self, username: str) -> Optional[User]:
        ...

    # Catalog

    @abstractmethod
    def create_item(self, item: Item) -> None:
        ...

    @abstractmethod
    def get_item(self, item_id: str) -> Optional[Item]:
        ...

    @abstractmethod
    def list_items(self) -> List[Item]:
        """All items, newest ``created_at`` first."""

    @abstractmethod
    def delete_item(self, item_id: str) -> Optional[int]:
        """Delete an item and all of its ledger records.

        Returns the number of ledger records removed, or None if the item
        does not exist.
        """

    # Lending + ledger

    @abstractmethod
    def transition(
        self,
        item_id: str,
        expected: LendingState,
        record: TransactionRecord,
    ) -> Tuple[TransitionOutcome, Optional[Item]]:
        """Compare-and-swap the item's lending state and append ``record``.

        The new state is ``record.type.resulting_state``. On APPLIED the
        updated item is returned; otherwise nothing is written.
        """

    @abstractmethod
    def list_transactions(self, user_id: Optional[str] = None) -> List[TransactionRecord]:
        """Ledger records, most recent first, optionally for one user."""

    @abstractmethod
    def last_transaction(self, item_id: str) -> Optional[TransactionRecord]:
        """Most recent ledger record for an item."""

    @abstractmethod
    def ping(self) -> bool:
        ...


_store: Optional[LibraryStore] = None
_store_lock = threading.Lock()


def build_store(backend: Optional[str] = None) -> LibraryStore:
    """Create the store for the configured backend.

    Falls back to the in-memory store when Redis is unreachable, except in
    production where that is a storage fault.
    """
    from lendingdesk.infrastructure.memory import MemoryLibraryStore
    from lendingdesk.infrastructure.redis import RedisLibraryStore, get_redis_client

    backend = backend or settings.storage_backend
    if backend == "memory":
        logger.info("Using in-memory storage backend")
        return MemoryLibraryStore()

    client = get_redis_client()
    if client is None:
        if settings.environment == "production":
            raise StorageFault("Redis is unavailable")
        logger.warning("Redis unavailable, falling back to in-memory storage")
        return MemoryLibraryStore()

    return RedisLibraryStore(client, key_prefix=settings.key_prefix)


def get_store() -> LibraryStore:
    """FastAPI dependency returning the process-wide store."""
    global _store
    if _store is None:
        # Sync dependency: first requests may arrive on several worker threads
        with _store_lock:
            if _store is None:
                _store = build_store()
    return _store
