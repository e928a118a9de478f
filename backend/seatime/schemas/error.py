"""Standard error response schema."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    detail: str
    existing_entry_id: Optional[int] = None
