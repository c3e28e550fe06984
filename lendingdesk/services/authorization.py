"""Authorization Gate: which roles may perform which actions.

The policy is one table so it can be read and tested in one place. Callers
that are not authenticated never get here; the session layer redirects
them to the login page first.
"""
from enum import Enum
from typing import Dict, FrozenSet

from lendingdesk.core.errors import NotAuthorizedError
from lendingdesk.core.logging import get_logger
from lendingdesk.domain.user import Identity, Role

logger = get_logger(__name__)


class Action(str, Enum):
    REGISTER_ITEM = "register_item"
    ISSUE = "issue"
    RETURN = "return"
    REMOVE_ITEM = "remove_item"
    LIST_OWN_TRANSACTIONS = "list_own_transactions"
    LIST_ALL_TRANSACTIONS = "list_all_transactions"
    AUDIT_LEDGER = "audit_ledger"


class Decision(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"


ANY_ROLE: FrozenSet[Role] = frozenset(Role)

POLICY: Dict[Action, FrozenSet[Role]] = {
    Action.REGISTER_ITEM: ANY_ROLE,
    Action.ISSUE: ANY_ROLE,
    Action.RETURN: ANY_ROLE,
    Action.LIST_OWN_TRANSACTIONS: ANY_ROLE,
    Action.REMOVE_ITEM: frozenset({Role.TEACHER, Role.ADMIN}),
    Action.LIST_ALL_TRANSACTIONS: frozenset({Role.ADMIN}),
    Action.AUDIT_LEDGER: frozenset({Role.ADMIN}),
}

DENIAL_MESSAGES: Dict[Action, str] = {
    Action.REMOVE_ITEM: "Not authorized to delete",
}


def authorize(action: Action, role: Role) -> Decision:
    """Decide whether ``role`` may perform ``action``.

    Unknown actions are denied.
    """
    allowed_roles = POLICY.get(action, frozenset())
    return Decision.ALLOWED if role in allowed_roles else Decision.DENIED


def ensure_allowed(action: Action, identity: Identity) -> None:
    """Raise NotAuthorizedError unless the identity's role allows ``action``."""
    if authorize(action, identity.role) is Decision.ALLOWED:
        return

    logger.warning(
        f"Denied {action.value} for {identity.username}",
        extra={"user_id": identity.id, "role": identity.role.value, "action": action.value},
    )
    raise NotAuthorizedError(DENIAL_MESSAGES.get(action, "Not authorized"))
