import hashlib
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import InvalidInputError, NotFoundError
from ..models.api_key import APIKey
from ..schemas import APIKeyInfo, APIKeyResponse
from ..utils.logging import get_logger

logger = get_logger(__name__)

CACHE_TTL_SECONDS = 3600
DISPLAY_PREFIX_CHARS = 6

QUOTA_EXCEEDED = "quota_exceeded"
INVALID_KEY = "invalid_key"


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()


@dataclass
class ChargeResult:
    success: bool
    usage_count: int
    usage_limit: int
    reason: Optional[str] = None

    @property
    def remaining(self) -> int:
        return max(0, self.usage_limit - self.usage_count)


class APIKeyLedger:
    """Issues API keys, validates them and meters their usage."""

    def __init__(self, db: Session, redis_client=None):
        self.db = db
        self.redis = redis_client

    # -------------------------------------------------------------------------
    # Issuance and ownership
    # -------------------------------------------------------------------------

    def generate_api_key(self) -> tuple[str, str]:
        """Generate a new API key and its hash."""
        key = f"{settings.api_key_prefix}{secrets.token_urlsafe(32)}"
        return key, hash_api_key(key)

    def create_api_key(
        self, user_id: str, name: str, limit: Optional[int] = None
    ) -> APIKeyResponse:
        """Create a new API key; the raw key is only ever returned here."""
        if limit is not None and limit <= 0:
            raise InvalidInputError("limit must be a positive integer")

        key, key_hash = self.generate_api_key()
        api_key = APIKey(
            id=f"ak_{uuid.uuid4().hex[:16]}",
            user_id=user_id,
            name=name,
            key_hash=key_hash,
            key_prefix=key[: len(settings.api_key_prefix) + DISPLAY_PREFIX_CHARS],
            usage_count=0,
            usage_limit=limit or settings.default_usage_limit,
            is_active=True,
        )

        self.db.add(api_key)
        self.db.commit()
        self.db.refresh(api_key)

        self._cache_key(key_hash, api_key.id)
        logger.info("api_key_created", api_key_id=api_key.id, user_id=user_id)

        return APIKeyResponse(
            **APIKeyInfo.model_validate(api_key).model_dump(),
            key=key,
        )

    def list_api_keys(self, user_id: str) -> List[APIKey]:
        return (
            self.db.query(APIKey)
            .filter(APIKey.user_id == user_id)
            .order_by(APIKey.created_at.desc())
            .all()
        )

    def get_api_key(self, user_id: str, key_id: str) -> APIKey:
        api_key = (
            self.db.query(APIKey)
            .filter(APIKey.id == key_id, APIKey.user_id == user_id)
            .first()
        )
        if not api_key:
            raise NotFoundError("API key not found")
        return api_key

    def update_api_key(
        self,
        user_id: str,
        key_id: str,
        name: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> APIKey:
        if name is None and limit is None:
            raise InvalidInputError("Nothing to update")

        api_key = self.get_api_key(user_id, key_id)
        if limit is not None and limit <= 0:
            raise InvalidInputError("limit must be a positive integer")

        if name is not None:
            api_key.name = name
        if limit is not None:
            # usage_count <= usage_limit must hold against concurrent charges
            result = self.db.execute(
                update(APIKey)
                .where(APIKey.id == api_key.id, APIKey.usage_count <= limit)
                .values(usage_limit=limit)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                self.db.refresh(api_key)
                raise InvalidInputError(
                    f"limit cannot be lower than current usage ({api_key.usage_count})"
                )

        self.db.commit()
        self.db.refresh(api_key)
        return api_key

    def deactivate_api_key(self, user_id: str, key_id: str) -> APIKey:
        """Soft delete - just mark as inactive."""
        api_key = self.get_api_key(user_id, key_id)
        api_key.is_active = False
        self.db.commit()
        self._evict_key(api_key.key_hash)
        return api_key

    def delete_api_key(self, user_id: str, key_id: str) -> None:
        api_key = self.get_api_key(user_id, key_id)
        key_hash = api_key.key_hash
        self.db.delete(api_key)
        self.db.commit()
        self._evict_key(key_hash)
        logger.info("api_key_deleted", api_key_id=key_id, user_id=user_id)

    # -------------------------------------------------------------------------
    # Validation and metering
    # -------------------------------------------------------------------------

    def validate(self, raw_key: Optional[str]) -> Optional[APIKey]:
        """Return the active key matching ``raw_key``, or None."""
        if not raw_key or not raw_key.startswith(settings.api_key_prefix):
            return None

        key_hash = hash_api_key(raw_key)

        # Redis maps hash -> id only; counts always come from the database
        cached_id = self._cached_key_id(key_hash)
        if cached_id:
            api_key = (
                self.db.query(APIKey)
                .filter(
                    APIKey.id == cached_id,
                    APIKey.key_hash == key_hash,
                    APIKey.is_active.is_(True),
                )
                .first()
            )
            if api_key:
                return api_key

        api_key = (
            self.db.query(APIKey)
            .filter(APIKey.key_hash == key_hash, APIKey.is_active.is_(True))
            .first()
        )
        if api_key:
            self._cache_key(key_hash, api_key.id)
        return api_key

    @staticmethod
    def check_quota(api_key: APIKey) -> bool:
        return api_key.remaining > 0

    def increment(self, api_key: APIKey) -> ChargeResult:
        """Charge one unit, re-checking the quota inside the same UPDATE."""
        key_id = api_key.id
        result = self.db.execute(
            update(APIKey)
            .where(
                APIKey.id == key_id,
                APIKey.is_active.is_(True),
                APIKey.usage_count < APIKey.usage_limit,
            )
            .values(
                usage_count=APIKey.usage_count + 1,
                last_used_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        charged = result.rowcount == 1

        current = self.db.query(APIKey).filter(APIKey.id == key_id).first()
        if current is None:
            logger.warning("charge_rejected", api_key_id=key_id, reason=INVALID_KEY)
            return ChargeResult(False, 0, 0, INVALID_KEY)

        if charged:
            logger.info(
                "usage_charged",
                api_key_id=key_id,
                usage_count=current.usage_count,
                usage_limit=current.usage_limit,
            )
            return ChargeResult(True, current.usage_count, current.usage_limit)

        reason = QUOTA_EXCEEDED if current.is_active else INVALID_KEY
        logger.warning("charge_rejected", api_key_id=key_id, reason=reason)
        return ChargeResult(False, current.usage_count, current.usage_limit, reason)

    # -------------------------------------------------------------------------
    # Redis cache (optional)
    # -------------------------------------------------------------------------

    def _cached_key_id(self, key_hash: str) -> Optional[str]:
        if not self.redis:
            return None
        try:
            return self.redis.get(f"api_key:{key_hash}")
        except Exception as e:
            logger.warning("api_key_cache_unavailable", error=str(e))
            return None

    def _cache_key(self, key_hash: str, key_id: str) -> None:
        if not self.redis:
            return
        try:
            self.redis.setex(f"api_key:{key_hash}", CACHE_TTL_SECONDS, key_id)
        except Exception as e:
            logger.warning("api_key_cache_unavailable", error=str(e))

    def _evict_key(self, key_hash: str) -> None:
        if not self.redis:
            return
        try:
            self.redis.delete(f"api_key:{key_hash}")
        except Exception as e:
            logger.warning("api_key_cache_unavailable", error=str(e))
