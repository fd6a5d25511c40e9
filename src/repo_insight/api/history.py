import math
from typing import List

from fastapi import APIRouter, Depends, Query

from ..models import AnalysisHistory, UserRepository
from ..schemas import (
    AnalysisHistoryDetail,
    AnalysisHistoryEntry,
    AnalysisHistoryPage,
    FavoriteUpdateRequest,
    HistoryItem,
    Pagination,
)
from ..services.store import RepositoryStore
from .dependencies import get_store, require_user

router = APIRouter(prefix="/v1", tags=["History"])


def to_history_item(link: UserRepository) -> HistoryItem:
    repository = link.repository
    technologies = list(repository.technologies or [])
    return HistoryItem(
        id=link.id,
        repo_id=repository.id,
        repo_owner=repository.owner,
        repo_name=repository.repo_name,
        avatar_url=f"https://github.com/{repository.owner}.png",
        description=repository.purpose,
        language=technologies[0] if technologies else "Unknown",
        stars=repository.stars or 0,
        topics=",".join(technologies),
        created_at=link.created_at,
        is_favorite=link.is_favorite,
    )


def to_history_entry(entry: AnalysisHistory) -> AnalysisHistoryEntry:
    return AnalysisHistoryEntry(
        id=entry.id,
        repo_owner=entry.repo_owner,
        repo_name=entry.repo_name,
        api_key_id=entry.api_key_id,
        created_at=entry.created_at,
    )


# -----------------------------------------------------------------------------
# Repositories the user has analyzed
# -----------------------------------------------------------------------------


@router.get("/history", response_model=List[HistoryItem])
async def list_history(
    user_id: str = Depends(require_user),
    store: RepositoryStore = Depends(get_store),
):
    """Repositories linked to the user, newest first."""
    return [to_history_item(link) for link in store.list_links(user_id)]


@router.patch("/history/{link_id}", response_model=HistoryItem)
async def update_history_item(
    link_id: str,
    request: FavoriteUpdateRequest,
    user_id: str = Depends(require_user),
    store: RepositoryStore = Depends(get_store),
):
    return to_history_item(store.set_favorite(user_id, link_id, request.is_favorite))


@router.delete("/history/{link_id}")
async def delete_history_item(
    link_id: str,
    user_id: str = Depends(require_user),
    store: RepositoryStore = Depends(get_store),
):
    """Remove a repository from the user's history; the analysis stays cached."""
    store.delete_link(user_id, link_id)
    return {"message": "History entry removed"}


# -----------------------------------------------------------------------------
# Analyses served through the user's API keys
# -----------------------------------------------------------------------------


@router.get("/analysis-history", response_model=AnalysisHistoryPage)
async def list_analysis_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(require_user),
    store: RepositoryStore = Depends(get_store),
):
    entries, total = store.list_history(user_id, page=page, limit=limit)
    return AnalysisHistoryPage(
        history=[to_history_entry(entry) for entry in entries],
        pagination=Pagination(
            page=page,
            limit=limit,
            total_items=total,
            total_pages=math.ceil(total / limit),
        ),
    )


@router.get("/analysis-history/{entry_id}", response_model=AnalysisHistoryDetail)
async def get_analysis_history(
    entry_id: str,
    user_id: str = Depends(require_user),
    store: RepositoryStore = Depends(get_store),
):
    entry = store.get_history(user_id, entry_id)
    return AnalysisHistoryDetail(
        id=entry.id,
        repo_owner=entry.repo_owner,
        repo_name=entry.repo_name,
        api_key_id=entry.api_key_id,
        api_key_name=entry.api_key.name if entry.api_key else None,
        created_at=entry.created_at,
        analysis=entry.analysis_result,
    )


@router.delete("/analysis-history/{entry_id}")
async def delete_analysis_history(
    entry_id: str,
    user_id: str = Depends(require_user),
    store: RepositoryStore = Depends(get_store),
):
    store.delete_history(user_id, entry_id)
    return {"message": "Analysis history entry deleted"}
