"""Cache-first persistence of analyzed repositories, user links and history."""

import uuid
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..errors import NotFoundError, PersistenceError
from ..models import AnalysisHistory, Repository, RepositoryFact, UserRepository
from ..schemas import AnalysisResult
from ..utils.logging import get_logger

logger = get_logger(__name__)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def _unique_facts(facts: List[str]) -> List[str]:
    seen = set()
    ordered = []
    for fact in facts:
        text = fact.strip()
        if text and text not in seen:
            seen.add(text)
            ordered.append(text)
    return ordered


class RepositoryStore:
    """Repository records keyed by (owner, repo_name), plus per-user links."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Repositories
    # -------------------------------------------------------------------------

    def find(self, owner: str, repo: str) -> Optional[Repository]:
        return (
            self.db.query(Repository)
            .filter(
                func.lower(Repository.owner) == owner.lower(),
                func.lower(Repository.repo_name) == repo.lower(),
            )
            .first()
        )

    def find_analyzed(self, owner: str, repo: str) -> Optional[Repository]:
        repository = self.find(owner, repo)
        if repository is not None and repository.is_analyzed:
            return repository
        return None

    def save_analysis(
        self,
        owner: str,
        repo: str,
        github_url: str,
        stars: int,
        result: AnalysisResult,
    ) -> Tuple[Repository, bool]:
        """Persist a fresh analysis.

        Returns ``(repository, created)``. When another request stored the
        same repository first, its row is returned with ``created=False`` and
        nothing is overwritten.
        """
        repository = self.find(owner, repo)
        if repository is not None and repository.is_analyzed:
            logger.info("analysis_conflict", owner=owner, repo=repo)
            return repository, False

        if repository is None:
            repository = Repository(id=_new_id("repo"), owner=owner, repo_name=repo)
            self.db.add(repository)

        repository.github_url = github_url
        repository.summary = result.summary
        repository.purpose = result.purpose
        repository.technologies = list(result.technologies)
        repository.structure = result.structure
        repository.stars = stars
        repository.facts = [
            RepositoryFact(fact=fact, position=position)
            for position, fact in enumerate(_unique_facts(result.facts))
        ]

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            winner = self.find(owner, repo)
            if winner is None or not winner.is_analyzed:
                logger.error("analysis_conflict_unresolved", owner=owner, repo=repo)
                raise PersistenceError()
            logger.info("analysis_conflict", owner=owner, repo=repo)
            return winner, False
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("analysis_persist_failed", owner=owner, repo=repo, error=str(e))
            raise PersistenceError() from e

        self.db.refresh(repository)
        logger.info("analysis_stored", owner=owner, repo=repo, repository_id=repository.id)
        return repository, True

    # -------------------------------------------------------------------------
    # User links
    # -------------------------------------------------------------------------

    def _find_link(self, user_id: str, repository_id: str) -> Optional[UserRepository]:
        return (
            self.db.query(UserRepository)
            .filter(
                UserRepository.user_id == user_id,
                UserRepository.repository_id == repository_id,
            )
            .first()
        )

    def ensure_link(self, user_id: str, repository_id: str) -> UserRepository:
        """Link a user to a repository once; a concurrent duplicate is harmless."""
        link = self._find_link(user_id, repository_id)
        if link is not None:
            return link

        link = UserRepository(
            id=_new_id("ur"), user_id=user_id, repository_id=repository_id
        )
        self.db.add(link)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self._find_link(user_id, repository_id)
            if existing is None:
                logger.error("link_failed", user_id=user_id, repository_id=repository_id)
                raise PersistenceError("Failed to link repository to user")
            return existing
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("Failed to link repository to user") from e

        self.db.refresh(link)
        return link

    def list_links(self, user_id: str) -> List[UserRepository]:
        return (
            self.db.query(UserRepository)
            .options(joinedload(UserRepository.repository))
            .filter(UserRepository.user_id == user_id)
            .order_by(UserRepository.created_at.desc(), UserRepository.id)
            .all()
        )

    def get_link(self, user_id: str, link_id: str) -> UserRepository:
        link = (
            self.db.query(UserRepository)
            .filter(UserRepository.id == link_id, UserRepository.user_id == user_id)
            .first()
        )
        if link is None:
            raise NotFoundError("History entry not found")
        return link

    def set_favorite(self, user_id: str, link_id: str, is_favorite: bool) -> UserRepository:
        link = self.get_link(user_id, link_id)
        link.is_favorite = is_favorite
        self.db.commit()
        self.db.refresh(link)
        return link

    def delete_link(self, user_id: str, link_id: str) -> None:
        """Remove a link; the repository record stays cached."""
        link = self.get_link(user_id, link_id)
        self.db.delete(link)
        self.db.commit()

    # -------------------------------------------------------------------------
    # Keyed analysis log
    # -------------------------------------------------------------------------

    def record_history(
        self,
        user_id: str,
        api_key_id: Optional[str],
        owner: str,
        repo: str,
        analysis: Dict[str, Any],
    ) -> AnalysisHistory:
        entry = AnalysisHistory(
            id=_new_id("ah"),
            user_id=user_id,
            api_key_id=api_key_id,
            repo_owner=owner,
            repo_name=repo,
            analysis_result=analysis,
        )
        self.db.add(entry)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(entry)
        return entry

    def list_history(
        self, user_id: str, page: int = 1, limit: int = 10
    ) -> Tuple[List[AnalysisHistory], int]:
        query = self.db.query(AnalysisHistory).filter(AnalysisHistory.user_id == user_id)
        total = query.count()
        entries = (
            query.order_by(AnalysisHistory.created_at.desc(), AnalysisHistory.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return entries, total

    def get_history(self, user_id: str, entry_id: str) -> AnalysisHistory:
        entry = (
            self.db.query(AnalysisHistory)
            .options(joinedload(AnalysisHistory.api_key))
            .filter(AnalysisHistory.id == entry_id, AnalysisHistory.user_id == user_id)
            .first()
        )
        if entry is None:
            raise NotFoundError("Analysis history entry not found")
        return entry

    def delete_history(self, user_id: str, entry_id: str) -> None:
        entry = self.get_history(user_id, entry_id)
        self.db.delete(entry)
        self.db.commit()
