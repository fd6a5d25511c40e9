"""Analyzed repository and its facts."""

from sqlalchemy import (
    Column,
    String,
    Integer,
    DateTime,
    Text,
    JSON,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..database import Base


class Repository(Base):
    """Latest analysis of a GitHub repository, keyed by (owner, repo_name)."""

    __tablename__ = "repositories"

    id = Column(String, primary_key=True)
    owner = Column(String, nullable=False)
    repo_name = Column(String, nullable=False)
    github_url = Column(String, nullable=False)
    summary = Column(Text)
    purpose = Column(Text)
    technologies = Column(JSON, default=list)
    structure = Column(Text)
    stars = Column(Integer, default=0)
    analyzed_at = Column(DateTime(timezone=True), server_default=func.now())

    facts = relationship(
        "RepositoryFact",
        order_by="RepositoryFact.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_analyzed(self) -> bool:
        return bool(self.summary)

    def __repr__(self):
        return f"<Repository(owner='{self.owner}', repo_name='{self.repo_name}')>"


# GitHub owner and repository names are case-insensitive
Index(
    "uq_repositories_identity",
    func.lower(Repository.owner),
    func.lower(Repository.repo_name),
    unique=True,
)


class RepositoryFact(Base):
    """Free-text fact attached to a repository, ordered by insertion."""

    __tablename__ = "repository_facts"
    __table_args__ = (
        UniqueConstraint("repository_id", "fact", name="uq_repository_facts_fact"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    repository_id = Column(
        String,
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    fact = Column(Text, nullable=False)
    position = Column(Integer, nullable=False, default=0)
