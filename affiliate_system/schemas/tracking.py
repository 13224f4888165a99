# affiliate_system/schemas/tracking.py
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class VisitRequest(BaseModel):
    """Body of POST /tracking/visit, sent by the cookie middleware."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    ref: str = Field(min_length=1, max_length=32)
    visitor_id: str = Field(min_length=1, max_length=64)
    url: Optional[str] = None
