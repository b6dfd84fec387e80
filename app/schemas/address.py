"""Address lookup / update request and response schemas."""

from typing import Any

from pydantic import BaseModel, Field

from app.schemas.common import CamelModel

class UpdateAddressRequest(BaseModel):
    """Body of POST /updateAddress. Both keys are checked by the service."""

    token: str | None = None
    address: dict[str, Any] | None = Field(
        default=None,
        description="Submitted record keyed by public field names (e.g. 'Full Name', 'City').",
    )

class ReconciliationResponse(CamelModel):
    match_status: str = Field(description="MATCH when nothing changed, MISMATCH otherwise.")
    changed_fields: list[str] = Field(default_factory=list)
    changed_values: list[str] = Field(
        default_factory=list,
        description="One 'field: old -> new' entry per changed field.",
    )
