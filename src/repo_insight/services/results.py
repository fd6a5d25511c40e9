"""Baseline and AI enrichment of an analysis, and how they combine."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..models import Repository
from ..schemas import ActivityData, AnalysisResult, ContributorInfo
from .github import RepositorySnapshot
from .summarizer import EngineResult


class Baseline(BaseModel):
    """Analysis derived purely from fetched GitHub facts."""

    summary: str
    purpose: str
    technologies: List[str]
    structure: str
    facts: List[str]
    contributors: List[ContributorInfo]
    activity_data: ActivityData


class Enrichment(BaseModel):
    """Fields produced by the summarization stages; all optional."""

    summary: Optional[str] = None
    purpose: Optional[str] = None
    technologies: Optional[List[str]] = None
    features: Optional[List[str]] = None
    cool_facts: Optional[List[str]] = None
    development_status: Optional[str] = None
    setup_complexity: Optional[str] = None
    architecture: Optional[str] = None
    code_organization: Optional[str] = None
    best_practices: Optional[List[str]] = None
    improvement_suggestions: Optional[List[str]] = None
    complexity_assessment: Optional[str] = None
    main_components: Optional[List[str]] = None
    strengths: Optional[List[str]] = None
    weaknesses: Optional[List[str]] = None
    use_cases: Optional[List[str]] = None
    community_assessment: Optional[str] = None
    maintenance_quality: Optional[str] = None
    learning_value: Optional[str] = None
    recommendation_score: Optional[int] = None
    conclusion: Optional[str] = None


def build_baseline(snapshot: RepositorySnapshot) -> Baseline:
    info = snapshot.info
    activity = snapshot.activity
    technologies = list(snapshot.languages)
    if not technologies and info.language != "Not specified":
        technologies = [info.language]

    top_languages = ", ".join(technologies[:3]) or info.language
    facts = [
        f"The repository has {info.stars} stars and {info.forks} forks.",
        f"Main languages: {top_languages}.",
        f"{activity.last_month_commits} commits landed in the last 30 days.",
        f"There are {activity.open_issues} open issues and {activity.open_prs} open pull requests.",
    ]

    subject = info.description or info.repo
    summary = (
        f"{subject} is a {info.language} project by {info.owner}. "
        f"It currently has {info.stars} stars and {info.forks} forks."
    )

    return Baseline(
        summary=summary,
        purpose=info.description or f"Purpose of {info.full_name} is not described.",
        technologies=technologies,
        structure=snapshot.structure,
        facts=facts,
        contributors=snapshot.contributors,
        activity_data=activity,
    )


def build_enrichment(engine_result: EngineResult) -> Enrichment:
    values: Dict[str, Any] = {}

    readme = engine_result.readme
    if readme is not None:
        values.update(
            summary=readme.summary,
            purpose=readme.purpose,
            technologies=readme.technologies,
            features=readme.features,
            cool_facts=readme.interesting_facts,
            development_status=readme.development_status,
            setup_complexity=readme.setup_complexity,
        )

    structure = engine_result.structure
    if structure is not None:
        values.update(
            architecture=structure.architecture,
            code_organization=structure.code_organization,
            best_practices=structure.best_practices,
            improvement_suggestions=structure.improvement_suggestions,
            complexity_assessment=structure.complexity,
            main_components=structure.main_components,
        )

    synthesis = engine_result.synthesis
    if synthesis is not None:
        values.update(
            strengths=synthesis.strengths,
            weaknesses=synthesis.weaknesses,
            use_cases=synthesis.use_cases,
            community_assessment=synthesis.community_assessment,
            maintenance_quality=synthesis.maintenance_quality,
            learning_value=synthesis.learning_value,
            recommendation_score=synthesis.recommendation_score,
            conclusion=synthesis.conclusion,
        )
        # The combined assessment outranks the README-only summary
        if synthesis.overall_summary:
            values["summary"] = synthesis.overall_summary

    return Enrichment(**values)


def _is_present(value: Any) -> bool:
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, list):
        return bool(value)
    return value is not None


def merge(baseline: Baseline, enrichment: Enrichment) -> AnalysisResult:
    """Overlay enrichment on the baseline, field by field, when non-empty."""
    fields: Dict[str, Any] = baseline.model_dump()
    fields["contributors"] = baseline.contributors
    fields["activity_data"] = baseline.activity_data

    for name, value in enrichment.model_dump().items():
        if _is_present(value):
            fields[name] = value

    return AnalysisResult(**fields)


def result_from_record(repository: Repository, cached: bool) -> AnalysisResult:
    """Reshape a stored repository row into the public result."""
    return AnalysisResult(
        summary=repository.summary or "",
        purpose=repository.purpose or "",
        technologies=list(repository.technologies or []),
        structure=repository.structure or "",
        facts=[item.fact for item in repository.facts],
        owner=repository.owner,
        repo=repository.repo_name,
        url=repository.github_url,
        stars=repository.stars or 0,
        analyzed_at=repository.analyzed_at,
        cached=cached,
    )
