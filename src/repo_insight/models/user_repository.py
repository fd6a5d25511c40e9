"""Link between a user and a repository they analyzed."""

from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..database import Base


class UserRepository(Base):
    __tablename__ = "user_repositories"
    __table_args__ = (
        UniqueConstraint("user_id", "repository_id", name="uq_user_repositories_pair"),
    )

    id = Column(String, primary_key=True)
    user_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    repository_id = Column(
        String, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    is_favorite = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    repository = relationship("Repository")

    def __repr__(self):
        return f"<UserRepository(user_id='{self.user_id}', repository_id='{self.repository_id}')>"
