from sqlalchemy import Column, String, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..database import Base


class AnalysisHistory(Base):
    """Log of analyses served through an API key."""

    __tablename__ = "analysis_history"

    id = Column(String, primary_key=True)
    user_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    api_key_id = Column(String, ForeignKey("api_keys.id", ondelete="SET NULL"))

    repo_owner = Column(String, nullable=False)
    repo_name = Column(String, nullable=False)

    # Served AnalysisResult, camelCase keys
    analysis_result = Column(JSON)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    api_key = relationship("APIKey")

    def __repr__(self):
        return f"<AnalysisHistory(id='{self.id}', repo='{self.repo_owner}/{self.repo_name}')>"

