"""Three-stage AI summarization: README, structure, then a combined assessment."""

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..config import settings
from ..providers.llm import LLMClient, SummarizationError, SummarizationTimeout
from ..utils.logging import get_logger
from .github import RepositorySnapshot
from .prompts import (
    COMPREHENSIVE_ANALYSIS_PROMPT,
    README_ANALYSIS_PROMPT,
    STRUCTURE_ANALYSIS_PROMPT,
    build_messages,
)

logger = get_logger(__name__)

README_STAGE = "readme_analysis"
STRUCTURE_STAGE = "structure_analysis"
SYNTHESIS_STAGE = "comprehensive_analysis"


class ReadmeAnalysis(BaseModel):
    summary: str
    purpose: str
    features: List[str] = Field(default_factory=list)
    technologies: List[str] = Field(default_factory=list)
    interesting_facts: List[str] = Field(default_factory=list)
    development_status: Literal["early", "active", "mature", "maintenance", "unknown"]
    setup_complexity: Literal["low", "medium", "high", "unknown"]


class StructureAnalysis(BaseModel):
    architecture: str
    code_organization: str
    best_practices: List[str] = Field(default_factory=list)
    improvement_suggestions: List[str] = Field(default_factory=list)
    complexity: Literal["low", "medium", "high"]
    main_components: List[str] = Field(default_factory=list)


class ComprehensiveAnalysis(BaseModel):
    overall_summary: str
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    use_cases: List[str] = Field(default_factory=list)
    community_assessment: str
    maintenance_quality: str
    learning_value: str
    recommendation_score: int = Field(..., ge=1, le=10)
    conclusion: str


@dataclass
class RepositoryVitals:
    name: str
    stars: int
    forks: int
    description: str
    language: str
    languages: List[str]


@dataclass
class EngineResult:
    readme: Optional[ReadmeAnalysis] = None
    structure: Optional[StructureAnalysis] = None
    synthesis: Optional[ComprehensiveAnalysis] = None
    failures: Dict[str, SummarizationError] = field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return self.synthesis is None

    @property
    def all_timed_out(self) -> bool:
        """Both input stages failed by timing out."""
        return all(
            isinstance(self.failures.get(stage), SummarizationTimeout)
            for stage in (README_STAGE, STRUCTURE_STAGE)
        )


class SummarizationEngine:
    """Runs the summarization stages against an LLM; no persistence, no quota."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def analyze_readme(self, readme: str) -> ReadmeAnalysis:
        text = (readme or "")[: settings.readme_max_chars] or "(no README)"
        prompt = README_ANALYSIS_PROMPT.format(readme=text)
        return await self.llm.complete_structured(
            README_STAGE, build_messages(prompt), ReadmeAnalysis
        )

    async def analyze_structure(
        self, structure: str, languages: List[str]
    ) -> StructureAnalysis:
        prompt = STRUCTURE_ANALYSIS_PROMPT.format(
            structure=structure,
            languages=", ".join(languages) or "unknown",
        )
        return await self.llm.complete_structured(
            STRUCTURE_STAGE, build_messages(prompt), StructureAnalysis
        )

    async def synthesize(
        self,
        readme_analysis: ReadmeAnalysis,
        structure_analysis: StructureAnalysis,
        vitals: RepositoryVitals,
    ) -> ComprehensiveAnalysis:
        prompt = COMPREHENSIVE_ANALYSIS_PROMPT.format(
            name=vitals.name,
            description=vitals.description or "(none)",
            stars=vitals.stars,
            forks=vitals.forks,
            language=vitals.language,
            languages=", ".join(vitals.languages) or "unknown",
            readme_analysis=readme_analysis.model_dump_json(indent=2),
            structure_analysis=structure_analysis.model_dump_json(indent=2),
        )
        return await self.llm.complete_structured(
            SYNTHESIS_STAGE, build_messages(prompt), ComprehensiveAnalysis
        )

    async def run(self, snapshot: RepositorySnapshot) -> EngineResult:
        """Run every stage that can run; failures are recorded, not raised."""
        result = EngineResult()
        if not self.llm.enabled:
            return result

        info = snapshot.info
        try:
            result.readme = await self.analyze_readme(info.readme)
        except SummarizationError as e:
            logger.warning("stage_failed", stage=e.stage, reason=e.reason, repo=info.full_name)
            result.failures[README_STAGE] = e

        try:
            result.structure = await self.analyze_structure(
                snapshot.structure, snapshot.languages
            )
        except SummarizationError as e:
            logger.warning("stage_failed", stage=e.stage, reason=e.reason, repo=info.full_name)
            result.failures[STRUCTURE_STAGE] = e

        if result.readme is None or result.structure is None:
            return result

        vitals = RepositoryVitals(
            name=info.full_name,
            stars=info.stars,
            forks=info.forks,
            description=info.description,
            language=info.language,
            languages=snapshot.languages,
        )
        try:
            result.synthesis = await self.synthesize(result.readme, result.structure, vitals)
        except SummarizationError as e:
            logger.warning("stage_failed", stage=e.stage, reason=e.reason, repo=info.full_name)
            result.failures[SYNTHESIS_STAGE] = e

        return result
