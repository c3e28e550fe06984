"""FastAPI routes for the LendingDesk service.

- Session login/logout with a signed cookie
- Catalog listing and registration
- Issue/return through the lending state machine
- Member and admin ledger views

Rejections (validation, not found, conflict, not authorized) are raised as
``LendingDeskError`` subclasses and rendered by the handlers in ``main``.
"""
from typing import Any, Dict, List, Optional, Type

from fastapi import APIRouter, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, ValidationError as SchemaError

from lendingdesk.core.auth import (
    create_session_token,
    get_optional_identity,
    require_action,
)
from lendingdesk.core.config import settings
from lendingdesk.core.logging import get_logger, LogTimer
from lendingdesk.domain.item import BookIdRequest, BookRequest, Item
from lendingdesk.domain.transaction import Inconsistency, LedgerEntry, TransitionResult
from lendingdesk.domain.user import Identity, LoginRequest, RegisterRequest
from lendingdesk.infrastructure.store import LibraryStore, get_store
from lendingdesk.services.authorization import Action
from lendingdesk.services.catalog import CatalogService
from lendingdesk.services.identity import IdentityService
from lendingdesk.services.lending import LendingService
from lendingdesk.services.ledger import LedgerService

logger = get_logger(__name__)
router = APIRouter()

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def form_or_json(model: Type[BaseModel]):
    """Dependency factory parsing a request body sent as a form or as JSON.

    Browser forms post urlencoded bodies; API clients post JSON. Both map
    onto the same request model.

    Example:
        >>> def add_book(req: BookRequest = Depends(form_or_json(BookRequest))):
    """
    async def parse_body(request: Request):
        content_type = request.headers.get("content-type", "")
        data: Dict[str, Any] = {}
        if content_type.startswith(FORM_CONTENT_TYPES):
            data = dict(await request.form())
        elif await request.body():
            try:
                data = await request.json()
            except ValueError:
                raise RequestValidationError(
                    [{"type": "json_invalid", "loc": ("body",), "msg": "Invalid JSON body", "input": None}]
                )

        try:
            return model.model_validate(data)
        except SchemaError as e:
            raise RequestValidationError(e.errors())

    return parse_body


def get_catalog(store: LibraryStore = Depends(get_store)) -> CatalogService:
    return CatalogService(store)


def get_lending(store: LibraryStore = Depends(get_store)) -> LendingService:
    return LendingService(store)


def get_ledger(store: LibraryStore = Depends(get_store)) -> LedgerService:
    return LedgerService(store)


def get_identity_service(store: LibraryStore = Depends(get_store)) -> IdentityService:
    return IdentityService(store)


# -----------------
# CATALOG
# -----------------

@router.get("/", response_model=List[Item])
def home(catalog: CatalogService = Depends(get_catalog)):
    """List all books, newest first.

    Authentication: none
    """
    return catalog.list()


@router.post("/books", response_model=Item, status_code=status.HTTP_201_CREATED)
def add_book(
    req: BookRequest = Depends(form_or_json(BookRequest)),
    identity: Identity = Depends(require_action(Action.REGISTER_ITEM)),
    catalog: CatalogService = Depends(get_catalog),
):
    """Register a new book.

    Requires: Authentication
    """
    return catalog.register(
        req.book_name,
        req.book_author,
        req.book_pages,
        req.book_price,
        actor=identity,
    )


@router.post("/delete")
def delete_book(
    req: BookIdRequest = Depends(form_or_json(BookIdRequest)),
    identity: Identity = Depends(require_action(Action.REMOVE_ITEM)),
    catalog: CatalogService = Depends(get_catalog),
):
    """Delete a book and its ledger records.

    Requires: teacher or admin
    """
    removed = catalog.remove(req.book_id, actor=identity)
    return {"deleted": req.book_id, "transactions_removed": removed}


# -----------------
# LENDING
# -----------------

@router.post("/issue", response_model=TransitionResult)
def issue_book(
    req: BookIdRequest = Depends(form_or_json(BookIdRequest)),
    identity: Identity = Depends(require_action(Action.ISSUE)),
    lending: LendingService = Depends(get_lending),
):
    """Issue an available book to the caller.

    Requires: Authentication
    """
    return lending.issue(req.book_id, identity)


@router.post("/return", response_model=TransitionResult)
def return_book(
    req: BookIdRequest = Depends(form_or_json(BookIdRequest)),
    identity: Identity = Depends(require_action(Action.RETURN)),
    lending: LendingService = Depends(get_lending),
):
    """Return an issued book. Any member may return any issued book.

    Requires: Authentication
    """
    return lending.return_item(req.book_id, identity)


# -----------------
# LEDGER
# -----------------

@router.get("/transactions", response_model=List[LedgerEntry])
def my_transactions(
    identity: Identity = Depends(require_action(Action.LIST_OWN_TRANSACTIONS)),
    ledger: LedgerService = Depends(get_ledger),
):
    """The caller's own issue/return history, newest first.

    Requires: Authentication
    """
    return ledger.list_for_user(identity.id)


@router.get("/admin/transactions", response_model=List[LedgerEntry])
def all_transactions(
    identity: Identity = Depends(require_action(Action.LIST_ALL_TRANSACTIONS)),
    ledger: LedgerService = Depends(get_ledger),
):
    """Full ledger with usernames and book details.

    Requires: admin
    """
    return ledger.list_all()


@router.get("/admin/ledger/audit", response_model=List[Inconsistency])
def audit_ledger(
    identity: Identity = Depends(require_action(Action.AUDIT_LEDGER)),
    ledger: LedgerService = Depends(get_ledger),
):
    """Items whose lending state disagrees with their latest ledger record.

    Requires: admin
    """
    with LogTimer(logger, "ledger_audit_request"):
        return ledger.audit()


# -----------------
# AUTHENTICATION
# -----------------

@router.get("/login")
def login_page(identity: Optional[Identity] = Depends(get_optional_identity)):
    """Redirect target for requests without a session."""
    if identity is None:
        return {"authenticated": False, "detail": "Please log in"}
    return {"authenticated": True, "user": identity}


@router.post("/register")
def register(
    req: RegisterRequest = Depends(form_or_json(RegisterRequest)),
    identities: IdentityService = Depends(get_identity_service),
):
    """Create an account, then send the member to the login page.

    Example:
        POST /register
        {"username": "ayesha", "password": "password123", "role": "student"}
    """
    identities.register_user(req.username, req.password, req.role)
    return RedirectResponse("/login", status_code=status.HTTP_303_SEE_OTHER)


@router.post("/login")
def login(
    req: LoginRequest = Depends(form_or_json(LoginRequest)),
    identities: IdentityService = Depends(get_identity_service),
):
    """Check credentials, set the session cookie and go home.

    The failure message does not say whether the username exists.
    """
    with LogTimer(logger, "user_authentication"):
        identity = identities.authenticate(req.username, req.password)

    if identity is None:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "invalid_credentials", "detail": "Invalid credentials"},
        )

    response = RedirectResponse("/", status_code=status.HTTP_303_SEE_OTHER)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=create_session_token(identity),
        max_age=settings.session_expire_minutes * 60,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )
    return response


@router.get("/logout")
def logout(identity: Optional[Identity] = Depends(get_optional_identity)):
    """Clear the session cookie."""
    if identity is not None:
        logger.info(f"User logged out: {identity.username}", extra={"user_id": identity.id})
    response = RedirectResponse("/login", status_code=status.HTTP_303_SEE_OTHER)
    response.delete_cookie(settings.session_cookie_name)
    return response
