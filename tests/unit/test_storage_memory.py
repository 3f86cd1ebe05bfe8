import pytest

from consensus_orchestrator.config.settings import Settings
from consensus_orchestrator.schemas import Evaluation, KeySet, RoundResult
from consensus_orchestrator.storage.credentials import SettingsCredentialStore
from consensus_orchestrator.storage.memory import (
    InMemoryConversationStorage,
    InMemoryCredentialStore,
    InMemoryUsageCounter,
)


def _create(storage: InMemoryConversationStorage) -> str:
    record = storage.create_conversation(
        user_id="user-1", prompt="Q", max_rounds=3, consensus_threshold=80
    )
    assert record.status == "running"
    return record.conversation_id


def test_save_round_is_an_upsert() -> None:
    storage = InMemoryConversationStorage()
    conversation_id = _create(storage)

    first = storage.save_round(
        conversation_id,
        RoundResult(round=1, responses={"model-1": "a"}, evaluation=Evaluation(score=40)),
    )
    second = storage.save_round(
        conversation_id,
        RoundResult(round=1, responses={"model-1": "b"}, evaluation=Evaluation(score=45)),
    )

    rounds = storage.list_rounds(conversation_id)
    assert len(rounds) == 1
    assert rounds[0].responses == {"model-1": "b"}
    assert rounds[0].evaluation["score"] == 45
    assert second.created_at == first.created_at
    assert storage.save_round_calls == 2


def test_update_result_marks_completed() -> None:
    storage = InMemoryConversationStorage()
    conversation_id = _create(storage)

    storage.update_result(conversation_id, synthesis="Final", final_score=88, rounds_completed=2)

    record = storage.get_conversation(conversation_id)
    assert record.status == "completed"
    assert record.synthesis == "Final"
    assert record.final_score == 88
    assert record.rounds_completed == 2


def test_set_status_unknown_conversation_raises() -> None:
    with pytest.raises(KeyError):
        InMemoryConversationStorage().set_status("missing", "failed")


def test_usage_counts_once_per_run_key() -> None:
    counter = InMemoryUsageCounter()

    assert counter.record_usage("ip-hash", "consensus-1") is True
    assert counter.record_usage("ip-hash", "consensus-1") is False
    assert counter.record_usage("ip-hash", "consensus-2") is True

    assert counter.usage_count("ip-hash") == 2
    assert counter.usage_count("someone-else") == 0


def test_credential_stores() -> None:
    store = InMemoryCredentialStore({"user-1": KeySet(openai="sk-1")})

    assert store.get_keys("user-1").openai == "sk-1"
    assert store.get_keys("user-2") == KeySet()
    assert store.get_keys(None) == KeySet()

    settings_store = SettingsCredentialStore(Settings(openai_api_key="sk-env", tavily_api_key="tv"))
    keys = settings_store.get_keys(None)
    assert keys.openai == "sk-env"
    assert keys.tavily == "tv"
