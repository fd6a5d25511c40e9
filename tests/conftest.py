import asyncio
import base64
import json
import os
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

# Keep the module-level engine, Redis probe and LLM client inert under test
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://127.0.0.1:1/0")
os.environ["OPENAI_API_KEY"] = ""
os.environ["GITHUB_TOKEN"] = ""

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from repo_insight.database import create_tables, enable_sqlite_foreign_keys
from repo_insight.models import APIKey, User
from repo_insight.providers.llm import LLMClient
from repo_insight.services.github import GitHubClient
from repo_insight.services.ledger import APIKeyLedger
from repo_insight.services.orchestrator import AnalysisOrchestrator
from repo_insight.services.prompts import (
    COMPREHENSIVE_ANALYSIS_PROMPT,
    README_ANALYSIS_PROMPT,
    STRUCTURE_ANALYSIS_PROMPT,
)
from repo_insight.services.store import RepositoryStore
from repo_insight.services.summarizer import SummarizationEngine

OWNER = "octocat"
REPO = "Hello-World"
REPO_URL = f"https://github.com/{OWNER}/{REPO}"

README_TEXT = "# Hello World\n\nMy first repository on GitHub.\n"


# -----------------------------------------------------------------------------
# GitHub
# -----------------------------------------------------------------------------


def github_routes(owner: str = OWNER, repo: str = REPO) -> Dict[str, Tuple[int, Any]]:
    base = f"/repos/{owner}/{repo}"
    return {
        base: (
            200,
            {
                "name": repo,
                "full_name": f"{owner}/{repo}",
                "description": "My first repository on GitHub!",
                "stargazers_count": 2500,
                "forks_count": 2300,
                "language": "Python",
                "html_url": f"https://github.com/{owner}/{repo}",
                "updated_at": "2024-06-29T10:00:00Z",
                "created_at": "2011-01-26T19:01:12Z",
                "open_issues_count": 2,
                "watchers_count": 2500,
                "homepage": None,
                "topics": ["demo"],
                "license": {"name": "MIT License"},
                "default_branch": "main",
            },
        ),
        f"{base}/readme": (
            200,
            {"content": base64.b64encode(README_TEXT.encode()).decode(), "encoding": "base64"},
        ),
        f"{base}/languages": (200, {"Shell": 300, "Python": 1200}),
        f"{base}/contents": (
            200,
            [
                {"name": "src", "type": "dir"},
                {"name": "docs", "type": "dir"},
                {"name": "README.md", "type": "file"},
                {"name": "pyproject.toml", "type": "file"},
            ],
        ),
        f"{base}/contents/src": (
            200,
            [
                {"name": "hello", "type": "dir"},
                {"name": "main.py", "type": "file"},
            ],
        ),
        f"{base}/contributors": (
            200,
            [
                {
                    "login": "octocat",
                    "contributions": 42,
                    "avatar_url": "https://avatars.example/octocat",
                    "html_url": "https://github.com/octocat",
                }
            ],
        ),
        f"{base}/issues": (
            200,
            [
                {"number": 1, "state": "open"},
                {"number": 2, "state": "closed"},
                {"number": 3, "state": "open", "pull_request": {"url": "..."}},
            ],
        ),
        f"{base}/pulls": (
            200,
            [
                {"number": 3, "state": "open", "merged_at": None},
                {"number": 4, "state": "closed", "merged_at": "2024-06-01T00:00:00Z"},
                {"number": 5, "state": "closed", "merged_at": None},
            ],
        ),
        f"{base}/commits": (
            200,
            [
                {"commit": {"committer": {"date": "2024-06-29T10:00:00Z"}}},
                {"commit": {"committer": {"date": "2024-06-20T10:00:00Z"}}},
                {"commit": {"committer": {"date": "2024-04-01T00:00:00Z"}}},
            ],
        ),
    }


class FakeGitHub:
    """Serves canned GitHub responses through ``httpx.MockTransport``."""

    def __init__(self, routes: Optional[Dict[str, Tuple[int, Any]]] = None):
        self.routes = routes if routes is not None else github_routes()
        self.calls: List[str] = []
        self.headers: Dict[str, Dict[str, str]] = {}

    async def handler(self, request: httpx.Request) -> httpx.Response:
        # Let concurrent analyses interleave
        await asyncio.sleep(0)
        path = request.url.path
        self.calls.append(path)
        status, body = self.routes.get(path, (404, {"message": "Not Found"}))
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status, json=body, headers=self.headers.get(path, {}))

    def client(self) -> GitHubClient:
        return GitHubClient(
            token="",
            base_url="https://api.github.test",
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


# -----------------------------------------------------------------------------
# LLM
# -----------------------------------------------------------------------------

README_STAGE_JSON = {
    "summary": "A friendly demo repository.",
    "purpose": "Shows newcomers how a repository looks.",
    "features": ["Greets the world"],
    "technologies": ["Python", "Shell"],
    "interesting_facts": ["It is the first repo", "It is widely forked", "It is tiny"],
    "development_status": "mature",
    "setup_complexity": "low",
}

STRUCTURE_STAGE_JSON = {
    "architecture": "Single Python package",
    "code_organization": "Sources live under src/",
    "best_practices": ["Uses pyproject.toml"],
    "improvement_suggestions": ["Add a test suite"],
    "complexity": "low",
    "main_components": ["src/hello"],
}

SYNTHESIS_STAGE_JSON = {
    "overall_summary": "Hello-World is the canonical minimal example repository.",
    "strengths": ["Simple"],
    "weaknesses": ["Not much code"],
    "use_cases": ["Learning Git"],
    "community_assessment": "Large and casual",
    "maintenance_quality": "Stable",
    "learning_value": "High for beginners",
    "recommendation_score": 7,
    "conclusion": "A good first stop.",
}

STAGE_MARKERS = {
    "readme": README_ANALYSIS_PROMPT.splitlines()[0],
    "structure": STRUCTURE_ANALYSIS_PROMPT.splitlines()[0],
    "synthesis": COMPREHENSIVE_ANALYSIS_PROMPT.splitlines()[0],
}


def default_llm_responses() -> Dict[str, Any]:
    return {
        "readme": json.dumps(README_STAGE_JSON),
        "structure": json.dumps(STRUCTURE_STAGE_JSON),
        "synthesis": json.dumps(SYNTHESIS_STAGE_JSON),
    }


class ScriptedCompletions:
    """Stands in for ``AsyncOpenAI().chat.completions``."""

    def __init__(self, responses: Dict[str, Any]):
        self.responses = responses
        self.stages: List[str] = []
        self.requests: List[Dict[str, Any]] = []

    async def create(self, **kwargs):
        await asyncio.sleep(0)
        prompt = kwargs["messages"][-1]["content"]
        stage = next(name for name, marker in STAGE_MARKERS.items() if prompt.startswith(marker))
        self.stages.append(stage)
        self.requests.append(kwargs)

        outcome = self.responses[stage]
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=outcome))]
        )


class FakeOpenAI:
    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.chat = SimpleNamespace(
            completions=ScriptedCompletions(responses or default_llm_responses())
        )

    @property
    def completions(self) -> ScriptedCompletions:
        return self.chat.completions


def make_engine(responses: Optional[Dict[str, Any]] = None) -> SummarizationEngine:
    return SummarizationEngine(LLMClient(client=FakeOpenAI(responses)))


@pytest.fixture
def engine() -> SummarizationEngine:
    return make_engine()


# -----------------------------------------------------------------------------
# Database
# -----------------------------------------------------------------------------


@pytest.fixture
def db_engine(tmp_path):
    db_engine = create_engine(
        f"sqlite:///{tmp_path / 'repo_insight_test.db'}",
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(db_engine)
    create_tables(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def add_user(db, user_id: str = "usr_dev", email: str = "dev@example.com") -> User:
    user = User(id=user_id, email=email, name="Dev")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def user(db) -> User:
    return add_user(db)


@pytest.fixture
def ledger(db) -> APIKeyLedger:
    return APIKeyLedger(db)


@pytest.fixture
def store(db) -> RepositoryStore:
    return RepositoryStore(db)


def set_usage(db, key_id: str, usage_count: int, usage_limit: Optional[int] = None) -> None:
    api_key = db.get(APIKey, key_id)
    api_key.usage_count = usage_count
    if usage_limit is not None:
        api_key.usage_limit = usage_limit
    db.commit()


def make_orchestrator(db, github: FakeGitHub, engine: SummarizationEngine, redis_client=None):
    return AnalysisOrchestrator(
        APIKeyLedger(db, redis_client),
        RepositoryStore(db),
        github.client(),
        engine,
    )


class FakeRedis:
    """The subset of the redis client the ledger uses."""

    def __init__(self):
        self.data: Dict[str, str] = {}

    def get(self, name):
        return self.data.get(name)

    def setex(self, name, time, value):
        self.data[name] = value

    def delete(self, name):
        self.data.pop(name, None)
