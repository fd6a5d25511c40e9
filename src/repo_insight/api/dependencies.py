from typing import Optional

from fastapi import Cookie, Depends, Header, Request
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db, get_redis
from ..errors import UnauthenticatedError
from ..models.user import User
from ..services.ledger import APIKeyLedger
from ..services.orchestrator import AnalysisOrchestrator
from ..services.store import RepositoryStore
from ..utils.tokens import SessionTokenManager


def _bearer_value(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def get_api_key_from_request(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None, alias="x-api-key"),
) -> Optional[str]:
    """API key from ``x-api-key`` or ``Authorization: Bearer <key>``."""
    if x_api_key:
        return x_api_key.strip()

    bearer = _bearer_value(authorization)
    if bearer and bearer.startswith(settings.api_key_prefix):
        return bearer
    return None


def get_current_user_id(
    authorization: Optional[str] = Header(None),
    session_token: Optional[str] = Cookie(None),
    db: Session = Depends(get_db),
) -> Optional[str]:
    """Signed-in user from a session token, or None for anonymous callers."""
    token = _bearer_value(authorization)
    if token and token.startswith(settings.api_key_prefix):
        # An API key, not a session
        token = None
    token = token or session_token
    if not token:
        return None

    user_id = SessionTokenManager().verify_token(token)
    if not user_id:
        return None
    if db.get(User, user_id) is None:
        return None
    return user_id


def require_user(user_id: Optional[str] = Depends(get_current_user_id)) -> str:
    if not user_id:
        raise UnauthenticatedError()
    return user_id


def get_ledger(db: Session = Depends(get_db), redis_client=Depends(get_redis)) -> APIKeyLedger:
    return APIKeyLedger(db, redis_client)


def get_store(db: Session = Depends(get_db)) -> RepositoryStore:
    return RepositoryStore(db)


def get_orchestrator(
    request: Request,
    ledger: APIKeyLedger = Depends(get_ledger),
    store: RepositoryStore = Depends(get_store),
) -> AnalysisOrchestrator:
    state = request.app.state
    return AnalysisOrchestrator(ledger, store, state.github, state.engine)
