"""Database models for Repo Insight."""

from .user import User
from .api_key import APIKey
from .repository import Repository, RepositoryFact
from .user_repository import UserRepository
from .analysis_history import AnalysisHistory

__all__ = [
    "User",
    "APIKey",
    "Repository",
    "RepositoryFact",
    "UserRepository",
    "AnalysisHistory",
]
