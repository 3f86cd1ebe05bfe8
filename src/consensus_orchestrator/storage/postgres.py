"""PostgreSQL-backed storage with automatic table migration."""

from __future__ import annotations

import json
import threading
import uuid
from datetime import UTC, datetime
from typing import Any

from consensus_orchestrator.schemas import RoundResult
from consensus_orchestrator.storage.models import ConversationRecord, RoundRecord


class PostgresConversationStorage:
    """Persist conversations, rounds and preview usage in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("CONSENSUS_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS consensus_conversations (
                    conversation_id UUID PRIMARY KEY,
                    user_id TEXT,
                    preview_identifier TEXT,
                    prompt TEXT NOT NULL,
                    max_rounds INTEGER NOT NULL,
                    consensus_threshold INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    synthesis TEXT,
                    final_score INTEGER,
                    rounds_completed INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                ALTER TABLE consensus_conversations
                ADD COLUMN IF NOT EXISTS preview_identifier TEXT
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_consensus_conversations_user_id
                ON consensus_conversations(user_id)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS consensus_rounds (
                    conversation_id UUID NOT NULL
                        REFERENCES consensus_conversations(conversation_id) ON DELETE CASCADE,
                    round_number INTEGER NOT NULL,
                    responses_json JSONB NOT NULL DEFAULT '{}'::jsonb,
                    evaluation_json JSONB,
                    search_data_json JSONB,
                    has_error BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL,
                    UNIQUE (conversation_id, round_number)
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS preview_usage (
                    identifier TEXT PRIMARY KEY,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS preview_usage_runs (
                    run_key TEXT PRIMARY KEY,
                    identifier TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.commit()

    def create_conversation(
        self,
        *,
        user_id: str | None,
        prompt: str,
        max_rounds: int,
        consensus_threshold: int,
        preview_identifier: str | None = None,
    ) -> ConversationRecord:
        conversation_id = uuid.uuid4()
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO consensus_conversations (
                    conversation_id,
                    user_id,
                    preview_identifier,
                    prompt,
                    max_rounds,
                    consensus_threshold,
                    status,
                    created_at,
                    updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    conversation_id,
                    user_id,
                    preview_identifier,
                    prompt,
                    max_rounds,
                    consensus_threshold,
                    "running",
                    now,
                    now,
                ),
            )
            conn.commit()
        created = self.get_conversation(str(conversation_id))
        if created is None:
            raise RuntimeError("Failed to load created conversation")
        return created

    def save_round(self, conversation_id: str, round_result: RoundResult) -> RoundRecord:
        now = datetime.now(tz=UTC)
        evaluation = round_result.evaluation.to_wire() if round_result.evaluation else None
        search_data = round_result.search_data.to_wire() if round_result.search_data else None
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO consensus_rounds (
                    conversation_id,
                    round_number,
                    responses_json,
                    evaluation_json,
                    search_data_json,
                    has_error,
                    created_at,
                    updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (conversation_id, round_number) DO UPDATE
                SET responses_json = EXCLUDED.responses_json,
                    evaluation_json = EXCLUDED.evaluation_json,
                    search_data_json = EXCLUDED.search_data_json,
                    has_error = EXCLUDED.has_error,
                    updated_at = EXCLUDED.updated_at
                RETURNING *
                """,
                (
                    conversation_id,
                    round_result.round,
                    self._json_wrapper(dict(round_result.responses)),
                    self._json_wrapper(evaluation) if evaluation is not None else None,
                    self._json_wrapper(search_data) if search_data is not None else None,
                    round_result.has_error,
                    now,
                    now,
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to persist consensus round")
        return self._row_to_round(row)

    def update_result(
        self,
        conversation_id: str,
        *,
        synthesis: str,
        final_score: int,
        rounds_completed: int,
    ) -> ConversationRecord:
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE consensus_conversations
                SET status = %s,
                    synthesis = %s,
                    final_score = %s,
                    rounds_completed = %s,
                    updated_at = %s
                WHERE conversation_id::text = %s
                """,
                (
                    "completed",
                    synthesis,
                    final_score,
                    rounds_completed,
                    datetime.now(tz=UTC),
                    conversation_id,
                ),
            )
            conn.commit()
        return self._require(conversation_id)

    def set_status(self, conversation_id: str, status: str) -> ConversationRecord:
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE consensus_conversations
                SET status = %s,
                    updated_at = %s
                WHERE conversation_id::text = %s
                """,
                (status, datetime.now(tz=UTC), conversation_id),
            )
            conn.commit()
        return self._require(conversation_id)

    def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM consensus_conversations WHERE conversation_id::text = %s",
                (conversation_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_conversation(row)

    def list_rounds(self, conversation_id: str) -> list[RoundRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM consensus_rounds
                WHERE conversation_id::text = %s
                ORDER BY round_number ASC
                """,
                (conversation_id,),
            ).fetchall()
        return [self._row_to_round(row) for row in rows]

    def record_usage(self, identifier: str, run_key: str) -> bool:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            inserted = conn.execute(
                """
                INSERT INTO preview_usage_runs (run_key, identifier, created_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (run_key) DO NOTHING
                RETURNING run_key
                """,
                (run_key, identifier, now),
            ).fetchone()
            if inserted is None:
                conn.commit()
                return False
            conn.execute(
                """
                INSERT INTO preview_usage (identifier, usage_count, updated_at)
                VALUES (%s, 1, %s)
                ON CONFLICT (identifier) DO UPDATE
                SET usage_count = preview_usage.usage_count + 1,
                    updated_at = EXCLUDED.updated_at
                """,
                (identifier, now),
            )
            conn.commit()
        return True

    def usage_count(self, identifier: str) -> int:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT usage_count FROM preview_usage WHERE identifier = %s",
                (identifier,),
            ).fetchone()
        if row is None:
            return 0
        return int(row["usage_count"])

    def _require(self, conversation_id: str) -> ConversationRecord:
        refreshed = self.get_conversation(conversation_id)
        if refreshed is None:
            raise KeyError(f"Conversation {conversation_id} does not exist")
        return refreshed

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "consensus-orchestrator[postgres]"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json_optional(raw: Any) -> dict[str, Any] | None:
        if raw is None:
            return None
        if isinstance(raw, str):
            parsed = json.loads(raw)
        else:
            parsed = raw
        if isinstance(parsed, dict):
            return parsed
        return None

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_conversation(cls, row: Any) -> ConversationRecord:
        return ConversationRecord(
            conversation_id=str(row["conversation_id"]),
            user_id=row.get("user_id"),
            preview_identifier=row.get("preview_identifier"),
            prompt=row["prompt"],
            max_rounds=int(row["max_rounds"]),
            consensus_threshold=int(row["consensus_threshold"]),
            status=row["status"],
            synthesis=row.get("synthesis"),
            final_score=row.get("final_score"),
            rounds_completed=int(row.get("rounds_completed") or 0),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )

    @classmethod
    def _row_to_round(cls, row: Any) -> RoundRecord:
        responses = cls._parse_json_optional(row["responses_json"]) or {}
        return RoundRecord(
            conversation_id=str(row["conversation_id"]),
            round_number=int(row["round_number"]),
            responses={str(key): str(value) for key, value in responses.items()},
            evaluation=cls._parse_json_optional(row["evaluation_json"]),
            search_data=cls._parse_json_optional(row["search_data_json"]),
            has_error=bool(row["has_error"]),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )
