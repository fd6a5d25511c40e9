import logging
import secrets
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..errors import NotFoundError, UnauthenticatedError
from ..models import APIKey, User
from ..schemas import (
    APIKeyTotals,
    SessionRequest,
    SessionResponse,
    UserInfo,
    UserProfileResponse,
)
from ..utils.tokens import SessionTokenManager
from .dependencies import require_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Authentication"])


def upsert_user(db: Session, request: SessionRequest) -> User:
    """Find the user by email, creating or refreshing the profile."""
    email = request.email.strip().lower()
    user = db.query(User).filter(User.email == email).first()
    if user is None:
        user = User(id=f"usr_{uuid.uuid4().hex[:16]}", email=email)
        db.add(user)

    if request.name is not None:
        user.name = request.name
    if request.avatar_url is not None:
        user.avatar_url = request.avatar_url

    try:
        db.commit()
    except IntegrityError:
        # Same email signed in concurrently
        db.rollback()
        user = db.query(User).filter(User.email == email).one()

    db.refresh(user)
    return user


@router.post("/auth/session", response_model=SessionResponse)
async def create_session(
    request: SessionRequest,
    callback_secret: Optional[str] = Header(None, alias="X-Auth-Callback-Secret"),
    db: Session = Depends(get_db),
):
    """Sign-in hook for the OAuth front end: upsert the user, issue a session token."""
    expected = settings.auth_callback_secret
    if not expected or not callback_secret or not secrets.compare_digest(
        callback_secret, expected
    ):
        raise UnauthenticatedError("Invalid sign-in callback secret")

    user = upsert_user(db, request)
    logger.info(f"🔐 Session issued for user {user.id}")
    return SessionTokenManager().create_token(user.id)


@router.get("/v1/user/profile", response_model=UserProfileResponse)
async def get_user_profile(
    user_id: str = Depends(require_user),
    db: Session = Depends(get_db),
):
    """Profile of the signed-in user with API key usage totals."""
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    count, total_usage, total_limit = (
        db.query(
            func.count(APIKey.id),
            func.coalesce(func.sum(APIKey.usage_count), 0),
            func.coalesce(func.sum(APIKey.usage_limit), 0),
        )
        .filter(APIKey.user_id == user_id)
        .one()
    )

    return UserProfileResponse(
        user=UserInfo.model_validate(user),
        api_keys=APIKeyTotals(
            count=count,
            total_usage=total_usage,
            total_limit=total_limit,
        ),
    )
