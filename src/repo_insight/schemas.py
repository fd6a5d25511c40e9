from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional, Dict, Any
from datetime import datetime


class CamelModel(BaseModel):
    """Base for payloads exchanged with the dashboard (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# GitHub Fact Schemas
# =============================================================================


class ContributorInfo(CamelModel):
    """Single contributor, as listed by the GitHub contributors endpoint."""

    username: str
    contributions: int = 0
    avatar_url: str = ""
    profile_url: str = ""


class ActivityData(CamelModel):
    """Recent activity derived from issues, pull requests and commits."""

    total_commits: int = 0
    last_month_commits: int = 0
    open_issues: int = 0
    closed_issues: int = 0
    open_prs: int = Field(0, alias="openPRs")
    merged_prs: int = Field(0, alias="mergedPRs")
    commit_frequency: str = "low"
    last_commit_date: Optional[str] = None


# =============================================================================
# Analysis Schemas
# =============================================================================


class AnalyzeRequest(BaseModel):
    """Analyze a repository by URL."""

    url: str = Field(..., description="https://github.com/{owner}/{repo}")
    api_key: Optional[str] = Field(None, description="API key (optional here)")


class UsageInfo(BaseModel):
    current: int
    limit: int
    remaining: int


class AnalysisResult(CamelModel):
    """Public analysis shape.

    ``summary``, ``purpose``, ``technologies``, ``structure`` and ``facts`` are
    always present; everything else is absent when AI summarization degraded
    or when the result was served from the cache.
    """

    summary: str
    purpose: str
    technologies: List[str]
    structure: str
    facts: List[str]

    # README analysis
    features: Optional[List[str]] = None
    cool_facts: Optional[List[str]] = None
    development_status: Optional[str] = None
    setup_complexity: Optional[str] = None

    # Structure analysis
    architecture: Optional[str] = None
    code_organization: Optional[str] = None
    best_practices: Optional[List[str]] = None
    improvement_suggestions: Optional[List[str]] = None
    complexity_assessment: Optional[str] = None
    main_components: Optional[List[str]] = None

    # Comprehensive analysis
    strengths: Optional[List[str]] = None
    weaknesses: Optional[List[str]] = None
    use_cases: Optional[List[str]] = None
    community_assessment: Optional[str] = None
    maintenance_quality: Optional[str] = None
    learning_value: Optional[str] = None
    recommendation_score: Optional[int] = None
    conclusion: Optional[str] = None

    # Fetched facts
    contributors: Optional[List[ContributorInfo]] = None
    activity_data: Optional[ActivityData] = None

    # Record metadata
    owner: Optional[str] = None
    repo: Optional[str] = None
    url: Optional[str] = None
    stars: Optional[int] = None
    analyzed_at: Optional[datetime] = None
    cached: bool = False


class KeyedAnalysisResult(AnalysisResult):
    """Analysis served through an API key, with the key's usage after the charge."""

    usage: Optional[UsageInfo] = None


# =============================================================================
# API Key Schemas
# =============================================================================


class APIKeyCreateRequest(BaseModel):
    """Request to create new API key."""

    name: str = Field(..., min_length=1, description="Friendly name for the API key")
    limit: Optional[int] = Field(None, gt=0, description="Usage limit (default 100)")


class APIKeyUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    limit: Optional[int] = Field(None, gt=0)


class APIKeyInfo(BaseModel):
    """API key information (without the actual key)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    key_prefix: str
    created_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    is_active: bool
    usage_count: int
    usage_limit: int


class APIKeyResponse(APIKeyInfo):
    """API key creation response; the only time the secret is returned."""

    key: str


class ValidateKeyRequest(CamelModel):
    api_key: Optional[str] = None


class ValidateKeyResponse(BaseModel):
    valid: bool
    message: str
    remaining: Optional[int] = None
    limit: Optional[int] = None


# =============================================================================
# History Schemas
# =============================================================================


class HistoryItem(CamelModel):
    """A repository in the user's analysis history."""

    id: str
    repo_id: str
    repo_owner: str
    repo_name: str
    avatar_url: str
    description: Optional[str] = None
    language: str
    stars: int
    topics: str
    created_at: Optional[datetime] = None
    is_favorite: bool


class FavoriteUpdateRequest(BaseModel):
    is_favorite: bool


class AnalysisHistoryEntry(CamelModel):
    id: str
    repo_owner: str
    repo_name: str
    api_key_id: Optional[str] = None
    created_at: Optional[datetime] = None


class Pagination(CamelModel):
    page: int
    limit: int
    total_items: int
    total_pages: int


class AnalysisHistoryPage(BaseModel):
    history: List[AnalysisHistoryEntry]
    pagination: Pagination


class AnalysisHistoryDetail(CamelModel):
    id: str
    repo_owner: str
    repo_name: str
    api_key_id: Optional[str] = None
    api_key_name: Optional[str] = None
    created_at: Optional[datetime] = None
    analysis: Optional[Dict[str, Any]] = None


# =============================================================================
# User / Session Schemas
# =============================================================================


class SessionRequest(BaseModel):
    """Identity handed over by the OAuth front end after sign-in."""

    email: str = Field(..., min_length=3)
    name: Optional[str] = None
    avatar_url: Optional[str] = None


class SessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    expires_at: str
    user_id: str


class UserInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None


class APIKeyTotals(CamelModel):
    count: int
    total_usage: int
    total_limit: int


class UserProfileResponse(CamelModel):
    user: UserInfo
    api_keys: APIKeyTotals


# =============================================================================
# Error Schemas
# =============================================================================


class ErrorDetail(BaseModel):
    """Error detail."""

    message: str
    type: str


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: ErrorDetail
