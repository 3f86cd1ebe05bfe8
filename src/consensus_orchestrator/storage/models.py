"""Storage models shared by API and persistence backends."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class ConversationRecord(BaseModel):
    """Persisted consensus conversation."""

    conversation_id: str
    user_id: str | None = None
    preview_identifier: str | None = None
    prompt: str
    max_rounds: int
    consensus_threshold: int
    status: str
    synthesis: str | None = None
    final_score: int | None = None
    rounds_completed: int = 0
    created_at: datetime
    updated_at: datetime


class RoundRecord(BaseModel):
    """One persisted round, unique per (conversation_id, round_number)."""

    conversation_id: str
    round_number: int
    responses: dict[str, str]
    evaluation: dict[str, Any] | None = None
    search_data: dict[str, Any] | None = None
    has_error: bool = False
    created_at: datetime
    updated_at: datetime
