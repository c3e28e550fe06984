"""Lending state machine.

Items move between Available and Issued. Each move is one conditional
update in the store that also appends the ledger record, so an item is
never observed Issued without its Issued record, or the reverse. A move
whose precondition fails is rejected without touching anything.
"""
import uuid
from datetime import datetime, timezone

from lendingdesk.core.errors import AlreadyAvailable, AlreadyIssued, NotFoundError, ValidationError
from lendingdesk.core.logging import get_logger, LogTimer
from lendingdesk.domain.item import LendingState
from lendingdesk.domain.transaction import TransactionRecord, TransactionType, TransitionResult
from lendingdesk.domain.user import Identity
from lendingdesk.infrastructure.store import LibraryStore, TransitionOutcome
from lendingdesk.services.authorization import Action, ensure_allowed
from lendingdesk.utils.fields import clean_text

logger = get_logger(__name__)


class LendingService:
    """Issues and returns items on behalf of an authenticated member.

    Any member may return any issued item; the returner does not have to be
    the member who issued it.
    """

    def __init__(self, store: LibraryStore):
        self.store = store

    def issue(self, item_id: str, actor: Identity) -> TransitionResult:
        """Check an Available item out to ``actor``.

        Raises:
            NotFoundError: no such item
            AlreadyIssued: the item is already checked out
        """
        ensure_allowed(Action.ISSUE, actor)
        return self._apply(item_id, actor, TransactionType.ISSUED)

    def return_item(self, item_id: str, actor: Identity) -> TransitionResult:
        """Put an Issued item back on the shelf.

        Raises:
            NotFoundError: no such item
            AlreadyAvailable: the item is not checked out
        """
        ensure_allowed(Action.RETURN, actor)
        return self._apply(item_id, actor, TransactionType.RETURNED)

    def _apply(self, item_id: str, actor: Identity, txn_type: TransactionType) -> TransitionResult:
        item_id = clean_text(item_id)
        if not item_id:
            raise ValidationError("Book id required")

        if txn_type is TransactionType.ISSUED:
            expected = LendingState.AVAILABLE
        else:
            expected = LendingState.ISSUED

        record = TransactionRecord(
            id=uuid.uuid4().hex,
            user_id=actor.id,
            item_id=item_id,
            type=txn_type,
            timestamp=datetime.now(timezone.utc),
        )
        context = {"user_id": actor.id, "item_id": item_id, "action": txn_type.value}

        with LogTimer(logger, f"transition:{txn_type.value}"):
            outcome, item = self.store.transition(item_id, expected, record)

        if outcome is TransitionOutcome.NOT_FOUND:
            logger.info("Transition on unknown item", extra=context)
            raise NotFoundError("Book not found")

        if outcome is TransitionOutcome.CONFLICT:
            logger.info(f"Transition rejected, item not {expected.value}", extra=context)
            if txn_type is TransactionType.ISSUED:
                raise AlreadyIssued(item_id)
            raise AlreadyAvailable(item_id)

        logger.info(f"Item {txn_type.value.lower()} by {actor.username}", extra=context)
        return TransitionResult(item=item, transaction=record)
