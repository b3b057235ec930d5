from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

MAX_MESSAGE_CHARS = 4000


class ChatRequest(BaseModel):
    """Request payload for the chat API; blank fields are rejected by the handler."""
    message: Optional[str] = Field(default=None, max_length=MAX_MESSAGE_CHARS)
    sessionId: Optional[str] = Field(default=None, max_length=200)


class ChatResponse(BaseModel):
    """Response payload returned by the chat API."""
    response: str
    sessionId: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    products: int
    inventory_records: int
    sessions: int
    catalog_sha256: str = ""
