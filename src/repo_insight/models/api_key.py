"""API Key model."""

from sqlalchemy import (
    Column,
    String,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    CheckConstraint,
)
from sqlalchemy.sql import func
from ..database import Base


class APIKey(Base):
    """Per-user API key metered against a usage limit."""

    __tablename__ = "api_keys"
    __table_args__ = (
        CheckConstraint("usage_count >= 0", name="ck_api_keys_usage_non_negative"),
        CheckConstraint("usage_limit > 0", name="ck_api_keys_limit_positive"),
    )

    id = Column(String, primary_key=True)
    user_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    key_hash = Column(String, unique=True, nullable=False, index=True)
    key_prefix = Column(String, nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_used_at = Column(DateTime(timezone=True))
    is_active = Column(Boolean, default=True, nullable=False)
    usage_limit = Column(Integer, default=100, nullable=False)
    usage_count = Column(Integer, default=0, nullable=False)

    @property
    def remaining(self) -> int:
        return max(0, self.usage_limit - self.usage_count)

    def __repr__(self):
        return f"<APIKey(id='{self.id}', name='{self.name}')>"
