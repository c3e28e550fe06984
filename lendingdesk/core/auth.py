"""Session tokens and request identity for the LendingDesk API.

The session is a signed JWT carrying ``{id, username, role}``. Browsers get
it in an HttpOnly cookie set at login; API clients may send it as a bearer
token instead. A missing, expired or invalid session raises
``AuthenticationRequired``, which the app renders as a redirect to the
login page.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from lendingdesk.core.config import settings, DEFAULT_JWT_SECRET
from lendingdesk.core.errors import AuthenticationRequired
from lendingdesk.core.logging import get_logger
from lendingdesk.domain.user import Identity, TokenData
from lendingdesk.services.authorization import Action, ensure_allowed

logger = get_logger(__name__)

# JWT Configuration from settings
SECRET_KEY = settings.jwt_secret_key
ALGORITHM = settings.jwt_algorithm
SESSION_EXPIRE_MINUTES = settings.session_expire_minutes

# Production security check
if settings.environment == "production":
    if SECRET_KEY == DEFAULT_JWT_SECRET:
        raise ValueError("JWT_SECRET_KEY must be set to a secure value in production!")
    if len(SECRET_KEY) < 32:
        logger.warning("JWT_SECRET_KEY should be at least 32 characters for security")

# Bearer tokens are optional; the cookie is the primary carrier
security_optional = HTTPBearer(auto_error=False)


def create_session_token(
    identity: Identity,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create a signed session token for an authenticated member.

    Args:
        identity: Authenticated identity
        expires_delta: Token lifetime (default: SESSION_EXPIRE_MINUTES)

    Returns:
        Encoded JWT
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=SESSION_EXPIRE_MINUTES)

    now = datetime.now(timezone.utc)
    expire = now + expires_delta

    payload = {
        "sub": identity.id,
        "username": identity.username,
        "role": identity.role.value,
        "exp": expire,
        "iat": now,
    }

    token = jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)

    logger.info(
        f"Session created for {identity.username}",
        extra={"user_id": identity.id, "expires_at": expire.isoformat()}
    )

    return token


def decode_session_token(token: str) -> TokenData:
    """Decode and validate a session token.

    Raises:
        AuthenticationRequired: If the token is invalid or expired
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])

        return TokenData(
            sub=payload.get("sub"),
            username=payload.get("username"),
            role=payload.get("role"),
            exp=datetime.fromtimestamp(payload.get("exp"), tz=timezone.utc),
            iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc) if "iat" in payload else None,
        )

    except jwt.ExpiredSignatureError:
        logger.info("Expired session token presented")
        raise AuthenticationRequired("Session expired")

    except (jwt.InvalidTokenError, ValueError) as e:
        logger.warning(f"Invalid session token presented: {e}")
        raise AuthenticationRequired("Invalid session")


def _session_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get(settings.session_cookie_name)


async def get_optional_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_optional),
) -> Optional[Identity]:
    """FastAPI dependency returning the session identity, or None.

    An invalid or expired token counts as no session.
    """
    token = _session_token(request, credentials)
    if not token:
        return None
    try:
        token_data = decode_session_token(token)
    except AuthenticationRequired:
        return None
    return Identity(id=token_data.sub, username=token_data.username, role=token_data.role)


async def get_current_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_optional),
) -> Identity:
    """FastAPI dependency for routes that need a logged-in member.

    Raises:
        AuthenticationRequired: no valid session (rendered as a login redirect)

    Example:
        >>> @router.get("/transactions")
        >>> def mine(identity: Identity = Depends(get_current_identity)):
        ...     return ledger.list_for_user(identity.id)
    """
    token = _session_token(request, credentials)
    if not token:
        raise AuthenticationRequired()

    token_data = decode_session_token(token)
    identity = Identity(id=token_data.sub, username=token_data.username, role=token_data.role)

    request.state.user_id = identity.id
    logger.debug(f"Session identity: {identity.username}", extra={"user_id": identity.id})

    return identity


def require_action(action: Action):
    """Dependency factory gating a route behind the Authorization Gate.

    Example:
        >>> @router.get("/admin/transactions")
        >>> def all_txns(identity: Identity = Depends(require_action(Action.LIST_ALL_TRANSACTIONS))):
        ...     ...
    """
    async def action_checker(identity: Identity = Depends(get_current_identity)) -> Identity:
        ensure_allowed(action, identity)
        return identity

    return action_checker
