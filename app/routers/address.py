"""Address endpoints — thin HTTP layer.

Business logic lives in :mod:`app.services.address`. This router is
responsible only for HTTP concerns: reading the query / body and shaping the
response. Failures are raised as AppException subclasses and rendered by the
handlers in :mod:`app.core.exceptions`.
"""


import logging

from fastapi import APIRouter, Depends, Query

from app.core.exceptions import ValidationError
from app.schemas.address import ReconciliationResponse, UpdateAddressRequest
from app.schemas.common import ErrorResponse
from app.services.address import AddressService, get_address_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Address"])

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse, "description": "Token expired"},
    404: {"model": ErrorResponse, "description": "Invalid token"},
    500: {"model": ErrorResponse, "description": "Gift list unavailable"},
}


# ---------------------------------------------------------------------------
# GET /getAddress?token=...  current record for a token
# ---------------------------------------------------------------------------

@router.get("/getAddress", response_model=dict[str, str], responses=_ERRORS)
async def get_address(
    token: str | None = Query(default=None, description="Token from the backer's link"),
    service: AddressService = Depends(get_address_service),
):
    """Return the most recent record for *token*, keyed by public field names."""
    if not token:
        raise ValidationError("Missing token")
    return await service.fetch_record(token)


# ---------------------------------------------------------------------------
# POST /updateAddress  confirm or correct the address
# ---------------------------------------------------------------------------

@router.post(
    "/updateAddress",
    response_model=ReconciliationResponse,
    responses={**_ERRORS, 429: {"model": ErrorResponse, "description": "Submission limit reached"}},
)
async def update_address(
    body: UpdateAddressRequest | None = None,
    service: AddressService = Depends(get_address_service),
):
    """Diff the submitted address against the stored record and persist the result."""
    if body is None:
        raise ValidationError("Missing token or address")
    comparison = await service.update_address(body.token or "", body.address)
    return ReconciliationResponse.model_validate(comparison)
