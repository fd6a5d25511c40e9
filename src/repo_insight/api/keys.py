from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from ..schemas import (
    APIKeyCreateRequest,
    APIKeyInfo,
    APIKeyResponse,
    APIKeyUpdateRequest,
    ValidateKeyRequest,
    ValidateKeyResponse,
)
from ..services.ledger import QUOTA_EXCEEDED, APIKeyLedger
from .dependencies import get_api_key_from_request, get_ledger, require_user

router = APIRouter(prefix="/v1", tags=["API Keys"])


@router.post(
    "/api-keys",
    response_model=APIKeyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_api_key(
    request: APIKeyCreateRequest,
    user_id: str = Depends(require_user),
    ledger: APIKeyLedger = Depends(get_ledger),
):
    """Create a new API key. The key itself is only shown in this response."""
    return ledger.create_api_key(user_id, request.name, request.limit)


@router.get("/api-keys", response_model=List[APIKeyInfo])
async def list_api_keys(
    user_id: str = Depends(require_user),
    ledger: APIKeyLedger = Depends(get_ledger),
):
    return ledger.list_api_keys(user_id)


@router.get("/api-keys/{key_id}", response_model=APIKeyInfo)
async def get_api_key(
    key_id: str,
    user_id: str = Depends(require_user),
    ledger: APIKeyLedger = Depends(get_ledger),
):
    return ledger.get_api_key(user_id, key_id)


@router.put("/api-keys/{key_id}", response_model=APIKeyInfo)
async def update_api_key(
    key_id: str,
    request: APIKeyUpdateRequest,
    user_id: str = Depends(require_user),
    ledger: APIKeyLedger = Depends(get_ledger),
):
    """Rename a key or change its usage limit."""
    return ledger.update_api_key(user_id, key_id, name=request.name, limit=request.limit)


@router.delete("/api-keys/{key_id}")
async def delete_api_key(
    key_id: str,
    soft: bool = Query(False, description="Deactivate instead of deleting"),
    user_id: str = Depends(require_user),
    ledger: APIKeyLedger = Depends(get_ledger),
):
    if soft:
        ledger.deactivate_api_key(user_id, key_id)
        return {"message": "API key deactivated successfully"}

    ledger.delete_api_key(user_id, key_id)
    return {"message": "API key deleted successfully"}


@router.post("/validate-key", response_model=ValidateKeyResponse)
async def validate_key(
    request: ValidateKeyRequest,
    header_key: Optional[str] = Depends(get_api_key_from_request),
    ledger: APIKeyLedger = Depends(get_ledger),
):
    """Check a key and consume one unit of its quota when it is usable."""
    raw_key = request.api_key or header_key
    if not raw_key:
        return _rejected(status.HTTP_400_BAD_REQUEST, "API key is required")

    api_key = ledger.validate(raw_key)
    if api_key is None:
        return _rejected(status.HTTP_401_UNAUTHORIZED, "Invalid or inactive API key")
    if not ledger.check_quota(api_key):
        return _rejected(status.HTTP_403_FORBIDDEN, "API key usage limit reached")

    charge = ledger.increment(api_key)
    if not charge.success:
        if charge.reason == QUOTA_EXCEEDED:
            return _rejected(status.HTTP_403_FORBIDDEN, "API key usage limit reached")
        return _rejected(status.HTTP_401_UNAUTHORIZED, "Invalid or inactive API key")

    return ValidateKeyResponse(
        valid=True,
        message="API key is valid",
        remaining=charge.remaining,
        limit=charge.usage_limit,
    )


def _rejected(status_code: int, message: str) -> JSONResponse:
    body = ValidateKeyResponse(valid=False, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))
