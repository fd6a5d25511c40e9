import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from ..config import settings

TOKEN_TYPE = "session"


class SessionTokenManager:
    """Issues and verifies the JWT session tokens handed to signed-in users."""

    def __init__(self, secret_key: Optional[str] = None):
        self.secret_key = secret_key or settings.secret_key
        self.algorithm = "HS256"
        self.default_expiry = timedelta(hours=settings.session_token_hours)

    def create_token(
        self, user_id: str, expires_in: Optional[timedelta] = None
    ) -> Dict[str, Any]:
        """Create a session token for a user."""
        if expires_in is None:
            expires_in = self.default_expiry

        now = datetime.now(timezone.utc)
        expiry = now + expires_in

        payload = {
            "sub": user_id,
            "iat": now,
            "exp": expiry,
            "jti": secrets.token_hex(16),
            "type": TOKEN_TYPE,
        }
        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

        return {
            "access_token": token,
            "token_type": "bearer",
            "expires_in": int(expires_in.total_seconds()),
            "expires_at": expiry.isoformat(),
            "user_id": user_id,
        }

    def verify_token(self, token: str) -> Optional[str]:
        """Return the user id of a valid session token, else None."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

        if payload.get("type") != TOKEN_TYPE:
            return None
        return payload.get("sub") or None
