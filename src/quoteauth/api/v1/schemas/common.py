# Shared schema bases.
# Created: 2026-10-18

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class CamelModel(BaseModel):
    """Accepts and emits camelCase aliases; snake_case names also accepted on input."""

    model_config = ConfigDict(populate_by_name=True)


class SuccessResponse(BaseModel):
    success: bool = True
