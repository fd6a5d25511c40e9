import asyncio

import httpx
import openai
import pytest
from sqlalchemy.exc import OperationalError

from repo_insight.errors import (
    InvalidAPIKeyError,
    InvalidInputError,
    PersistenceError,
    QuotaExceededError,
    RepositoryNotFoundError,
    SummarizationTimeoutError,
    UnauthenticatedError,
)
from repo_insight.models import AnalysisHistory, APIKey, Repository, UserRepository
from repo_insight.schemas import KeyedAnalysisResult
from tests.conftest import (
    OWNER,
    REPO,
    REPO_URL,
    SYNTHESIS_STAGE_JSON,
    FakeGitHub,
    make_engine,
    make_orchestrator,
    set_usage,
)


def timeout_error() -> openai.APITimeoutError:
    return openai.APITimeoutError(
        request=httpx.Request("POST", "https://llm.test/v1/chat/completions")
    )


@pytest.fixture
def orchestrator(db, fake_github, engine):
    return make_orchestrator(db, fake_github, engine)


@pytest.fixture
def api_key(user, ledger):
    return ledger.create_api_key(user.id, "ci", limit=5)


def usage_of(db, key_id: str) -> int:
    db.expire_all()
    return db.get(APIKey, key_id).usage_count


@pytest.mark.asyncio
async def test_fresh_analysis_is_enriched_and_stored(db, orchestrator):
    result = await orchestrator.analyze(REPO_URL)

    assert result.summary == SYNTHESIS_STAGE_JSON["overall_summary"]
    assert result.cool_facts
    assert result.architecture == "Single Python package"
    assert result.recommendation_score == 7
    assert result.activity_data.open_prs == 1
    assert result.contributors[0].username == "octocat"
    assert result.owner == OWNER
    assert result.repo == REPO
    assert result.stars == 2500
    assert result.analyzed_at is not None
    assert not result.cached
    assert db.query(Repository).count() == 1


@pytest.mark.asyncio
async def test_scenario_a_last_unit_then_quota_exceeded(db, orchestrator, api_key):
    set_usage(db, api_key.id, 4)

    result = await orchestrator.analyze(REPO_URL, api_key=api_key.key, require_key=True)

    assert isinstance(result, KeyedAnalysisResult)
    assert result.usage.current == 5
    assert result.usage.remaining == 0
    assert usage_of(db, api_key.id) == 5

    with pytest.raises(QuotaExceededError):
        await orchestrator.analyze(REPO_URL, api_key=api_key.key, require_key=True)
    assert usage_of(db, api_key.id) == 5


@pytest.mark.asyncio
async def test_scenario_b_second_call_is_served_from_cache(db, fake_github, orchestrator):
    first = await orchestrator.analyze(REPO_URL)
    calls_after_first = len(fake_github.calls)

    second = await orchestrator.analyze(REPO_URL)

    assert second.cached
    assert len(fake_github.calls) == calls_after_first
    assert second.analyzed_at == first.analyzed_at
    assert second.summary == first.summary
    assert second.technologies == first.technologies
    assert second.facts == first.facts
    assert db.query(Repository).filter_by(owner=OWNER, repo_name=REPO).count() == 1


@pytest.mark.asyncio
async def test_scenario_c_malformed_url(db, fake_github, orchestrator, api_key):
    with pytest.raises(InvalidInputError):
        await orchestrator.analyze("https://gitlab.com/foo/bar", api_key=api_key.key)

    assert fake_github.calls == []
    assert usage_of(db, api_key.id) == 0


@pytest.mark.asyncio
async def test_scenario_d_missing_repository(db, engine, api_key):
    github = FakeGitHub({})
    orchestrator = make_orchestrator(db, github, engine)

    with pytest.raises(RepositoryNotFoundError):
        await orchestrator.analyze(REPO_URL, api_key=api_key.key)

    assert usage_of(db, api_key.id) == 0
    assert db.query(Repository).count() == 0


@pytest.mark.asyncio
async def test_scenario_e_concurrent_first_analyses(session_factory, fake_github):
    sessions = [session_factory(), session_factory()]
    try:
        orchestrators = [make_orchestrator(s, fake_github, make_engine()) for s in sessions]

        first, second = await asyncio.gather(
            *(o.analyze(REPO_URL) for o in orchestrators)
        )

        assert sessions[0].query(Repository).count() == 1
        for field in ("summary", "purpose", "technologies", "structure", "facts", "stars"):
            assert getattr(first, field) == getattr(second, field)
    finally:
        for s in sessions:
            s.close()


@pytest.mark.asyncio
async def test_invalid_key_fails_before_any_fetch(fake_github, orchestrator):
    with pytest.raises(InvalidAPIKeyError):
        await orchestrator.analyze(REPO_URL, api_key="repo-insight-bogus")
    assert fake_github.calls == []


@pytest.mark.asyncio
async def test_key_required(orchestrator):
    with pytest.raises(UnauthenticatedError):
        await orchestrator.analyze(REPO_URL, require_key=True)


@pytest.mark.asyncio
async def test_cache_hits_are_charged(db, orchestrator, api_key):
    await orchestrator.analyze(REPO_URL, api_key=api_key.key)
    result = await orchestrator.analyze(REPO_URL, api_key=api_key.key)

    assert result.cached
    assert result.usage.current == 2
    assert usage_of(db, api_key.id) == 2


@pytest.mark.asyncio
async def test_keyed_analysis_is_logged_for_key_owner(db, user, orchestrator, api_key):
    await orchestrator.analyze(REPO_URL, api_key=api_key.key)

    entry = db.query(AnalysisHistory).one()
    assert entry.user_id == user.id
    assert entry.api_key_id == api_key.id
    assert entry.analysis_result["summary"] == SYNTHESIS_STAGE_JSON["overall_summary"]
    assert "activityData" in entry.analysis_result
    assert "usage" not in entry.analysis_result


@pytest.mark.asyncio
async def test_history_failure_after_charge_still_serves(db, monkeypatch, orchestrator, api_key):
    def broken(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("disk full"))

    monkeypatch.setattr(orchestrator.store, "record_history", broken)

    result = await orchestrator.analyze(REPO_URL, api_key=api_key.key)

    assert result.usage.current == 1
    assert usage_of(db, api_key.id) == 1


@pytest.mark.asyncio
async def test_persistence_failure_is_not_charged(db, monkeypatch, orchestrator, api_key):
    def broken(*args, **kwargs):
        raise PersistenceError()

    monkeypatch.setattr(orchestrator.store, "save_analysis", broken)

    with pytest.raises(PersistenceError):
        await orchestrator.analyze(REPO_URL, api_key=api_key.key)
    assert usage_of(db, api_key.id) == 0


@pytest.mark.asyncio
async def test_degraded_analysis_keeps_baseline(db, fake_github, api_key):
    engine = make_engine({"readme": "nope", "structure": "nope", "synthesis": "nope"})
    orchestrator = make_orchestrator(db, fake_github, engine)

    result = await orchestrator.analyze(REPO_URL, api_key=api_key.key)

    assert result.summary
    assert result.purpose == "My first repository on GitHub!"
    assert result.technologies == ["Python", "Shell"]
    assert result.structure.startswith("Project root:")
    assert len(result.facts) == 4
    assert result.features is None
    assert result.strengths is None
    assert usage_of(db, api_key.id) == 1


@pytest.mark.asyncio
async def test_all_stages_timing_out_fails_uncharged(db, fake_github, api_key):
    engine = make_engine({"readme": timeout_error(), "structure": timeout_error(), "synthesis": "{}"})
    orchestrator = make_orchestrator(db, fake_github, engine)

    with pytest.raises(SummarizationTimeoutError):
        await orchestrator.analyze(REPO_URL, api_key=api_key.key)

    assert usage_of(db, api_key.id) == 0
    assert db.query(Repository).count() == 0


@pytest.mark.asyncio
async def test_session_analysis_links_user_once(db, user, orchestrator):
    await orchestrator.analyze(REPO_URL, user_id=user.id)
    await orchestrator.analyze(REPO_URL, user_id=user.id)

    assert db.query(UserRepository).filter_by(user_id=user.id).count() == 1


@pytest.mark.asyncio
async def test_lookup(db, user, fake_github, orchestrator):
    with pytest.raises(RepositoryNotFoundError):
        await orchestrator.lookup(OWNER, REPO)

    await orchestrator.analyze(REPO_URL)
    calls = len(fake_github.calls)

    result = await orchestrator.lookup(OWNER, REPO, user_id=user.id)

    assert result.cached
    assert len(fake_github.calls) == calls
    assert db.query(UserRepository).filter_by(user_id=user.id).count() == 1
