"""Read-only GitHub REST client used to gather repository facts."""

import asyncio
import base64
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..config import settings
from ..errors import (
    AppError,
    GitHubUpstreamError,
    InvalidInputError,
    RateLimitedError,
    RepositoryNotFoundError,
)
from ..schemas import ActivityData, ContributorInfo
from ..utils.logging import get_logger

logger = get_logger(__name__)

GITHUB_REPO_RE = re.compile(
    r"^https://github\.com/(?P<owner>[\w-]+)/(?P<repo>(?!\.+/?$)[\w.-]+)/?$",
    re.ASCII,
)

# Directories expanded one level deeper in the structure listing
IMPORTANT_DIRS = ["src", "app", "lib", "components", "packages"]
MAX_EXPANDED_DIRS = 3

CONFIG_FILES = [
    "package.json",
    "tsconfig.json",
    "next.config.js",
    "tailwind.config.js",
    "pyproject.toml",
    "setup.py",
    "setup.cfg",
    "requirements.txt",
    "Cargo.toml",
    "go.mod",
    "Makefile",
    "Dockerfile",
    "docker-compose.yml",
    ".env.example",
]

STRUCTURE_UNAVAILABLE = "Repository structure is unavailable."

ACTIVITY_PAGE_SIZE = 100
ACTIVITY_WINDOW = timedelta(days=30)


def parse_repo_url(url: str) -> Tuple[str, str]:
    """Split ``https://github.com/{owner}/{repo}`` into its parts."""
    match = GITHUB_REPO_RE.match((url or "").strip())
    if not match:
        raise InvalidInputError(
            "url must be a GitHub repository URL like https://github.com/OWNER/REPO"
        )
    return match.group("owner"), match.group("repo")


def classify_commit_frequency(last_month_commits: int) -> str:
    if last_month_commits > 50:
        return "very_active"
    if last_month_commits > 20:
        return "active"
    if last_month_commits > 5:
        return "moderate"
    return "low"


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class RepoInfo:
    owner: str
    repo: str
    stars: int = 0
    forks: int = 0
    description: str = ""
    language: str = "Not specified"
    readme: str = ""
    html_url: str = ""
    last_update: Optional[str] = None
    created_at: Optional[str] = None
    open_issues_count: int = 0
    watchers_count: int = 0
    homepage: Optional[str] = None
    topics: List[str] = field(default_factory=list)
    license: Optional[str] = None
    default_branch: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass
class RepositorySnapshot:
    """Everything fetched from GitHub for one analysis."""

    info: RepoInfo
    languages: List[str] = field(default_factory=list)
    structure: str = STRUCTURE_UNAVAILABLE
    contributors: List[ContributorInfo] = field(default_factory=list)
    activity: ActivityData = field(default_factory=ActivityData)


class GitHubClient:
    """Async wrapper around the GitHub REST endpoints the analysis needs.

    Only ``fetch_repo_info`` raises; every other fetch degrades to an empty
    default so a partial outage never aborts an analysis.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "repo-insight/1.0",
        }
        token = token if token is not None else settings.github_token
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=base_url or settings.github_api_base,
            headers=headers,
            timeout=httpx.Timeout(timeout_s or settings.http_timeout_s),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise GitHubUpstreamError(f"GitHub request timed out: {path}") from e
        except httpx.HTTPError as e:
            raise GitHubUpstreamError(f"GitHub request failed: {e}") from e

        if response.status_code == 404:
            raise RepositoryNotFoundError()
        if response.status_code == 429 or (
            response.status_code == 403
            and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            raise RateLimitedError()
        if response.status_code >= 400:
            raise GitHubUpstreamError(
                f"GitHub error: {response.status_code} on {path}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise GitHubUpstreamError(f"GitHub returned invalid JSON for {path}") from e

    async def _get_list(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        data = await self._get_json(path, params)
        if not isinstance(data, list):
            raise GitHubUpstreamError(f"Expected a list from {path}")
        return data

    async def fetch_readme(self, owner: str, repo: str) -> str:
        try:
            data = await self._get_json(f"/repos/{owner}/{repo}/readme")
            content = data.get("content") or ""
            return base64.b64decode(content).decode("utf-8", errors="replace")
        except (AppError, ValueError, AttributeError) as e:
            logger.warning("readme_unavailable", repo=f"{owner}/{repo}", error=str(e))
            return ""

    async def fetch_repo_info(self, owner: str, repo: str) -> RepoInfo:
        """Fetch repository metadata and README. Failure here is fatal."""
        data = await self._get_json(f"/repos/{owner}/{repo}")
        readme = await self.fetch_readme(owner, repo)

        license_info = data.get("license") or {}
        return RepoInfo(
            owner=owner,
            repo=repo,
            stars=data.get("stargazers_count") or 0,
            forks=data.get("forks_count") or 0,
            description=data.get("description") or "",
            language=data.get("language") or "Not specified",
            readme=readme,
            html_url=data.get("html_url") or f"https://github.com/{owner}/{repo}",
            last_update=data.get("updated_at"),
            created_at=data.get("created_at"),
            open_issues_count=data.get("open_issues_count") or 0,
            watchers_count=data.get("watchers_count") or 0,
            homepage=data.get("homepage"),
            topics=data.get("topics") or [],
            license=license_info.get("name"),
            default_branch=data.get("default_branch"),
        )

    async def fetch_languages(self, owner: str, repo: str) -> List[str]:
        """Languages ordered by byte count, most used first."""
        try:
            data = await self._get_json(f"/repos/{owner}/{repo}/languages")
            ranked = sorted(data.items(), key=lambda item: item[1], reverse=True)
            return [language for language, _ in ranked]
        except (AppError, AttributeError, TypeError) as e:
            logger.warning("languages_unavailable", repo=f"{owner}/{repo}", error=str(e))
            return []

    async def _list_dir(self, owner: str, repo: str, path: str = "") -> Tuple[List[str], List[str]]:
        suffix = f"/{path}" if path else ""
        items = await self._get_list(f"/repos/{owner}/{repo}/contents{suffix}")
        dirs = [item["name"] for item in items if item.get("type") == "dir"]
        files = [item["name"] for item in items if item.get("type") == "file"]
        return dirs, files

    async def fetch_structure(self, owner: str, repo: str) -> str:
        """Textual listing of the top level, a few key directories and config files."""
        try:
            directories, files = await self._list_dir(owner, repo)
        except (AppError, KeyError) as e:
            logger.warning("structure_unavailable", repo=f"{owner}/{repo}", error=str(e))
            return STRUCTURE_UNAVAILABLE

        lines = ["Project root:"]
        if directories:
            lines.append("- Directories: " + ", ".join(directories))
        if files:
            lines.append("- Files: " + ", ".join(files))

        expand = [d for d in IMPORTANT_DIRS if d in directories][:MAX_EXPANDED_DIRS]
        for directory in expand:
            try:
                sub_dirs, sub_files = await self._list_dir(owner, repo, directory)
            except (AppError, KeyError) as e:
                logger.info("directory_listing_skipped", directory=directory, error=str(e))
                continue
            lines.append("")
            lines.append(f"{directory}/:")
            if sub_dirs:
                lines.append("- Subdirectories: " + ", ".join(sub_dirs))
            if sub_files:
                lines.append("- Files: " + ", ".join(sub_files))

        config_files = [name for name in CONFIG_FILES if name in files]
        if config_files:
            lines.append("")
            lines.append("Configuration files:")
            lines.append("- " + ", ".join(config_files))

        return "\n".join(lines) + "\n"

    async def fetch_contributors(
        self, owner: str, repo: str, limit: Optional[int] = None
    ) -> List[ContributorInfo]:
        limit = limit or settings.contributors_limit
        try:
            data = await self._get_list(
                f"/repos/{owner}/{repo}/contributors", params={"per_page": limit}
            )
            return [
                ContributorInfo(
                    username=item.get("login") or "",
                    contributions=item.get("contributions") or 0,
                    avatar_url=item.get("avatar_url") or "",
                    profile_url=item.get("html_url") or "",
                )
                for item in data[:limit]
            ]
        except (AppError, AttributeError) as e:
            logger.warning("contributors_unavailable", repo=f"{owner}/{repo}", error=str(e))
            return []

    async def _safe_list(self, path: str, params: Dict[str, Any]) -> List[Any]:
        try:
            return await self._get_list(path, params)
        except AppError as e:
            logger.warning("activity_source_unavailable", path=path, error=str(e))
            return []

    async def fetch_activity(
        self, owner: str, repo: str, now: Optional[datetime] = None
    ) -> ActivityData:
        """Derive activity counts from the latest issues, pull requests and commits."""
        now = now or datetime.now(timezone.utc)
        base = f"/repos/{owner}/{repo}"

        issues, pulls, commits = await asyncio.gather(
            self._safe_list(f"{base}/issues", {"state": "all", "per_page": ACTIVITY_PAGE_SIZE}),
            self._safe_list(f"{base}/pulls", {"state": "all", "per_page": ACTIVITY_PAGE_SIZE}),
            self._safe_list(f"{base}/commits", {"per_page": ACTIVITY_PAGE_SIZE}),
        )

        # The issues endpoint also lists pull requests
        plain_issues = [i for i in issues if isinstance(i, dict) and "pull_request" not in i]

        commit_dates = []
        for commit in commits:
            try:
                commit_dates.append(commit["commit"]["committer"]["date"])
            except (KeyError, TypeError):
                continue

        window_start = now - ACTIVITY_WINDOW
        last_month_commits = 0
        for raw_date in commit_dates:
            parsed = _parse_timestamp(raw_date)
            if parsed is not None and parsed >= window_start:
                last_month_commits += 1

        return ActivityData(
            total_commits=len(commits),
            last_month_commits=last_month_commits,
            open_issues=sum(1 for i in plain_issues if i.get("state") == "open"),
            closed_issues=sum(1 for i in plain_issues if i.get("state") == "closed"),
            open_prs=sum(1 for p in pulls if isinstance(p, dict) and p.get("state") == "open"),
            merged_prs=sum(1 for p in pulls if isinstance(p, dict) and p.get("merged_at")),
            commit_frequency=classify_commit_frequency(last_month_commits),
            last_commit_date=commit_dates[0] if commit_dates else None,
        )

    async def fetch_snapshot(self, owner: str, repo: str) -> RepositorySnapshot:
        """Fetch everything an analysis needs; only the repo lookup can fail."""
        info = await self.fetch_repo_info(owner, repo)

        languages, structure, contributors, activity = await asyncio.gather(
            self.fetch_languages(owner, repo),
            self.fetch_structure(owner, repo),
            self.fetch_contributors(owner, repo),
            self.fetch_activity(owner, repo),
        )

        return RepositorySnapshot(
            info=info,
            languages=languages,
            structure=structure,
            contributors=contributors,
            activity=activity,
        )
