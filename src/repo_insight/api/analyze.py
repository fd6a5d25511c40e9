from typing import Optional

from fastapi import APIRouter, Depends

from ..config import settings
from ..errors import UnauthenticatedError
from ..schemas import AnalysisResult, AnalyzeRequest, ErrorResponse, KeyedAnalysisResult
from ..services.orchestrator import AnalysisOrchestrator
from .dependencies import get_api_key_from_request, get_current_user_id, get_orchestrator

router = APIRouter(
    prefix="/v1",
    tags=["Analysis"],
    responses={
        code: {"model": ErrorResponse} for code in (400, 401, 403, 404, 502, 503, 504)
    },
)


@router.post(
    "/analyze-repo",
    response_model=KeyedAnalysisResult,
    response_model_exclude_none=True,
)
async def analyze_repo(
    request: AnalyzeRequest,
    header_key: Optional[str] = Depends(get_api_key_from_request),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Analyze a repository on behalf of an API key; charges one unit."""
    return await orchestrator.analyze(
        request.url,
        api_key=header_key or request.api_key,
        require_key=True,
    )


@router.post(
    "/analyze-repository",
    response_model=KeyedAnalysisResult,
    response_model_exclude_none=True,
)
async def analyze_repository(
    request: AnalyzeRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    header_key: Optional[str] = Depends(get_api_key_from_request),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Analyze a repository for the signed-in user and add it to their history."""
    if user_id is None and not settings.allow_anonymous_analysis:
        raise UnauthenticatedError()

    return await orchestrator.analyze(
        request.url,
        api_key=header_key or request.api_key,
        user_id=user_id,
    )


@router.get(
    "/results/{owner}/{repo}",
    response_model=AnalysisResult,
    response_model_exclude_none=True,
)
async def get_result(
    owner: str,
    repo: str,
    user_id: Optional[str] = Depends(get_current_user_id),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Stored analysis of a repository; never fetches or charges."""
    return await orchestrator.lookup(owner, repo, user_id=user_id)
