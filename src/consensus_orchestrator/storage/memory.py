"""In-memory storage backends for tests and local runs."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from uuid import uuid4

from consensus_orchestrator.schemas import KeySet, RoundResult
from consensus_orchestrator.storage.models import ConversationRecord, RoundRecord


class InMemoryConversationStorage:
    """Simple in-memory implementation for unit tests."""

    def __init__(self) -> None:
        self._conversations: dict[str, ConversationRecord] = {}
        self._rounds: dict[tuple[str, int], RoundRecord] = {}
        self.save_round_calls = 0

    def migrate(self) -> None:
        return None

    def create_conversation(
        self,
        *,
        user_id: str | None,
        prompt: str,
        max_rounds: int,
        consensus_threshold: int,
        preview_identifier: str | None = None,
    ) -> ConversationRecord:
        now = datetime.now(UTC)
        record = ConversationRecord(
            conversation_id=str(uuid4()),
            user_id=user_id,
            preview_identifier=preview_identifier,
            prompt=prompt,
            max_rounds=max_rounds,
            consensus_threshold=consensus_threshold,
            status="running",
            created_at=now,
            updated_at=now,
        )
        self._conversations[record.conversation_id] = record
        return record

    def save_round(self, conversation_id: str, round_result: RoundResult) -> RoundRecord:
        self.save_round_calls += 1
        key = (conversation_id, round_result.round)
        now = datetime.now(UTC)
        existing = self._rounds.get(key)
        record = RoundRecord(
            conversation_id=conversation_id,
            round_number=round_result.round,
            responses=dict(round_result.responses),
            evaluation=(
                round_result.evaluation.to_wire() if round_result.evaluation is not None else None
            ),
            search_data=(
                round_result.search_data.to_wire() if round_result.search_data is not None else None
            ),
            has_error=round_result.has_error,
            created_at=existing.created_at if existing is not None else now,
            updated_at=now,
        )
        self._rounds[key] = record
        return record

    def update_result(
        self,
        conversation_id: str,
        *,
        synthesis: str,
        final_score: int,
        rounds_completed: int,
    ) -> ConversationRecord:
        current = self._require(conversation_id)
        updated = current.model_copy(
            update={
                "status": "completed",
                "synthesis": synthesis,
                "final_score": final_score,
                "rounds_completed": rounds_completed,
                "updated_at": datetime.now(UTC),
            }
        )
        self._conversations[conversation_id] = updated
        return updated

    def set_status(self, conversation_id: str, status: str) -> ConversationRecord:
        current = self._require(conversation_id)
        updated = current.model_copy(update={"status": status, "updated_at": datetime.now(UTC)})
        self._conversations[conversation_id] = updated
        return updated

    def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        return self._conversations.get(conversation_id)

    def list_rounds(self, conversation_id: str) -> list[RoundRecord]:
        rounds = [item for key, item in self._rounds.items() if key[0] == conversation_id]
        return sorted(rounds, key=lambda item: item.round_number)

    def _require(self, conversation_id: str) -> ConversationRecord:
        current = self._conversations.get(conversation_id)
        if current is None:
            raise KeyError(f"Conversation {conversation_id} does not exist")
        return current


class InMemoryUsageCounter:
    """Preview usage counter; each run key counts at most once."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}
        self._runs: set[str] = set()

    def record_usage(self, identifier: str, run_key: str) -> bool:
        if run_key in self._runs:
            return False
        self._runs.add(run_key)
        self._counts[identifier] = self._counts.get(identifier, 0) + 1
        return True

    def usage_count(self, identifier: str) -> int:
        return self._counts.get(identifier, 0)


class InMemoryCredentialStore:
    """Maps caller identity to a key set; unknown callers get an empty set."""

    def __init__(self, keys: Mapping[str, KeySet] | None = None) -> None:
        self._keys: dict[str, KeySet] = dict(keys or {})

    def set_keys(self, user_id: str, keys: KeySet) -> None:
        self._keys[user_id] = keys

    def get_keys(self, user_id: str | None) -> KeySet:
        if user_id is None:
            return KeySet()
        return self._keys.get(user_id, KeySet())
