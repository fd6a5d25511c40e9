"""End-to-end repository analysis: key check, cache, fetch, summarize, charge."""

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..errors import (
    InvalidAPIKeyError,
    QuotaExceededError,
    RepositoryNotFoundError,
    SummarizationTimeoutError,
    UnauthenticatedError,
)
from ..models import APIKey, Repository
from ..schemas import AnalysisResult, KeyedAnalysisResult, UsageInfo
from ..utils.logging import get_logger
from .github import GitHubClient, parse_repo_url
from .ledger import QUOTA_EXCEEDED, APIKeyLedger
from .results import build_baseline, build_enrichment, merge, result_from_record
from .store import RepositoryStore
from .summarizer import SummarizationEngine

logger = get_logger(__name__)


class AnalysisOrchestrator:
    """Coordinates one analysis request.

    Quota is charged exactly once, after the result has been obtained and
    persisted. Anything that fails before that point leaves the key untouched.
    """

    def __init__(
        self,
        ledger: APIKeyLedger,
        store: RepositoryStore,
        github: GitHubClient,
        engine: SummarizationEngine,
    ):
        self.ledger = ledger
        self.store = store
        self.github = github
        self.engine = engine

    async def analyze(
        self,
        url: str,
        api_key: Optional[str] = None,
        user_id: Optional[str] = None,
        require_key: bool = False,
    ) -> AnalysisResult:
        owner, repo = parse_repo_url(url)

        key = self._check_key(api_key, require_key)

        repository = self.store.find_analyzed(owner, repo)
        if repository is not None:
            logger.info("cache_hit", owner=owner, repo=repo)
            result = result_from_record(repository, cached=True)
        else:
            logger.info("cache_miss", owner=owner, repo=repo)
            repository, result = await self._compute(owner, repo)

        if user_id:
            self.store.ensure_link(user_id, repository.id)

        if key is None:
            return result
        return self._charge(key, owner, repo, result)

    async def lookup(
        self, owner: str, repo: str, user_id: Optional[str] = None
    ) -> AnalysisResult:
        """Serve a stored analysis without fetching or charging."""
        repository = self.store.find_analyzed(owner, repo)
        if repository is None:
            raise RepositoryNotFoundError(f"No analysis stored for {owner}/{repo}")
        if user_id:
            self.store.ensure_link(user_id, repository.id)
        return result_from_record(repository, cached=True)

    def _check_key(self, api_key: Optional[str], require_key: bool) -> Optional[APIKey]:
        if api_key is None:
            if require_key:
                raise UnauthenticatedError("API key required")
            return None

        key = self.ledger.validate(api_key)
        if key is None:
            raise InvalidAPIKeyError()
        if not self.ledger.check_quota(key):
            raise QuotaExceededError()
        return key

    async def _compute(self, owner: str, repo: str) -> tuple[Repository, AnalysisResult]:
        snapshot = await self.github.fetch_snapshot(owner, repo)

        engine_result = await self.engine.run(snapshot)
        if engine_result.all_timed_out:
            logger.error("summarization_timed_out", owner=owner, repo=repo)
            raise SummarizationTimeoutError()
        if engine_result.degraded:
            logger.warning(
                "analysis_degraded",
                owner=owner,
                repo=repo,
                failed_stages=sorted(engine_result.failures),
            )

        merged = merge(build_baseline(snapshot), build_enrichment(engine_result))
        repository, created = self.store.save_analysis(
            owner,
            repo,
            f"https://github.com/{owner}/{repo}",
            snapshot.info.stars,
            merged,
        )
        if not created:
            # Another request stored this repository first; serve its record
            return repository, result_from_record(repository, cached=False)

        result = merged.model_copy(
            update={
                "facts": [item.fact for item in repository.facts],
                "owner": repository.owner,
                "repo": repository.repo_name,
                "url": repository.github_url,
                "stars": repository.stars,
                "analyzed_at": repository.analyzed_at,
            }
        )
        return repository, result

    def _charge(
        self, key: APIKey, owner: str, repo: str, result: AnalysisResult
    ) -> KeyedAnalysisResult:
        key_id = key.id
        charge = self.ledger.increment(key)
        if not charge.success:
            if charge.reason == QUOTA_EXCEEDED:
                raise QuotaExceededError()
            raise InvalidAPIKeyError()

        keyed = KeyedAnalysisResult(
            **result.model_dump(),
            usage=UsageInfo(
                current=charge.usage_count,
                limit=charge.usage_limit,
                remaining=charge.remaining,
            ),
        )

        owner_id = key.user_id
        if owner_id:
            try:
                self.store.record_history(
                    owner_id,
                    key_id,
                    owner,
                    repo,
                    keyed.model_dump(mode="json", by_alias=True, exclude={"usage"}),
                )
            except SQLAlchemyError as e:
                logger.error(
                    "charged_without_history",
                    api_key_id=key_id,
                    owner=owner,
                    repo=repo,
                    error=str(e),
                )
        return keyed
