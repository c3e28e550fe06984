"""Catalog management: registering, listing and removing items."""
import uuid
from datetime import datetime, timezone
from typing import Any, List

from lendingdesk.core.errors import NotFoundError, ValidationError
from lendingdesk.core.logging import get_logger, LogTimer
from lendingdesk.domain.item import Item, LendingState
from lendingdesk.domain.user import Identity
from lendingdesk.infrastructure.store import LibraryStore
from lendingdesk.services.authorization import Action, ensure_allowed
from lendingdesk.utils.fields import clean_text, coerce_non_negative_float, coerce_non_negative_int

logger = get_logger(__name__)


class CatalogService:

    def __init__(self, store: LibraryStore):
        self.store = store

    def register(
        self,
        name: Any,
        author: Any,
        page_count: Any = None,
        price: Any = None,
        *,
        actor: Identity,
    ) -> Item:
        """Add a new Available item to the catalog.

        Name and author are required. Page count and price are coerced
        leniently: anything missing, non-numeric or negative becomes 0.

        Raises:
            ValidationError: name or author missing
        """
        ensure_allowed(Action.REGISTER_ITEM, actor)

        name = clean_text(name)
        author = clean_text(author)
        if not name or not author:
            raise ValidationError("Name & author required")

        item = Item(
            id=uuid.uuid4().hex,
            name=name,
            author=author,
            page_count=coerce_non_negative_int(page_count),
            price=coerce_non_negative_float(price),
            lending_state=LendingState.AVAILABLE,
            created_at=datetime.now(timezone.utc),
        )
        with LogTimer(logger, "create_item"):
            self.store.create_item(item)

        logger.info(
            f"Item registered: {item.name!r} by {item.author!r}",
            extra={"item_id": item.id, "user_id": actor.id},
        )
        return item

    def remove(self, item_id: str, *, actor: Identity) -> int:
        """Delete an item and every ledger record that references it.

        Returns:
            Number of ledger records removed with the item

        Raises:
            NotAuthorizedError: caller is not a teacher or admin
            NotFoundError: no such item
        """
        ensure_allowed(Action.REMOVE_ITEM, actor)

        item_id = clean_text(item_id)
        if not item_id:
            raise ValidationError("Book id required")

        with LogTimer(logger, "delete_item"):
            removed = self.store.delete_item(item_id)

        if removed is None:
            raise NotFoundError("Book not found")

        logger.info(
            f"Item deleted with {removed} ledger records",
            extra={"item_id": item_id, "user_id": actor.id},
        )
        return removed

    def list(self) -> List[Item]:
        """All items, newest first."""
        return self.store.list_items()

    def get(self, item_id: str) -> Item:
        item = self.store.get_item(item_id)
        if item is None:
            raise NotFoundError("Book not found")
        return item
