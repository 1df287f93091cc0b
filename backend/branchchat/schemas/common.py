from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class APIModel(BaseModel):
    """Base model for API payloads, readable from stored records by attribute."""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())


class ErrorResponse(APIModel):
    """Error body returned for failures outside the router-level mappings."""

    code: str
    message: str
