"""Storage interfaces for consensus conversations, credentials and preview usage."""

from __future__ import annotations

from typing import Protocol

from consensus_orchestrator.schemas import KeySet, RoundResult
from consensus_orchestrator.storage.models import ConversationRecord, RoundRecord


class ConversationStorage(Protocol):
    def migrate(self) -> None: ...

    def create_conversation(
        self,
        *,
        user_id: str | None,
        prompt: str,
        max_rounds: int,
        consensus_threshold: int,
        preview_identifier: str | None = None,
    ) -> ConversationRecord: ...

    def save_round(self, conversation_id: str, round_result: RoundResult) -> RoundRecord: ...

    def update_result(
        self,
        conversation_id: str,
        *,
        synthesis: str,
        final_score: int,
        rounds_completed: int,
    ) -> ConversationRecord: ...

    def set_status(self, conversation_id: str, status: str) -> ConversationRecord: ...

    def get_conversation(self, conversation_id: str) -> ConversationRecord | None: ...

    def list_rounds(self, conversation_id: str) -> list[RoundRecord]: ...


class CredentialStore(Protocol):
    def get_keys(self, user_id: str | None) -> KeySet: ...


class UsageCounter(Protocol):
    def record_usage(self, identifier: str, run_key: str) -> bool: ...

    def usage_count(self, identifier: str) -> int: ...
