"""User model."""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from ..database import Base


class User(Base):
    """A signed-in user; created by the sign-in hook."""

    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String)
    avatar_url = Column(String)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<User(id='{self.id}', email='{self.email}')>"
