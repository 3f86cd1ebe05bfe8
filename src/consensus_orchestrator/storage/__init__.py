"""Storage backends and models."""

from consensus_orchestrator.storage.base import ConversationStorage, CredentialStore, UsageCounter
from consensus_orchestrator.storage.credentials import SettingsCredentialStore
from consensus_orchestrator.storage.memory import (
    InMemoryConversationStorage,
    InMemoryCredentialStore,
    InMemoryUsageCounter,
)
from consensus_orchestrator.storage.models import ConversationRecord, RoundRecord
from consensus_orchestrator.storage.postgres import PostgresConversationStorage

__all__ = [
    "ConversationRecord",
    "ConversationStorage",
    "CredentialStore",
    "InMemoryConversationStorage",
    "InMemoryCredentialStore",
    "InMemoryUsageCounter",
    "PostgresConversationStorage",
    "RoundRecord",
    "SettingsCredentialStore",
    "UsageCounter",
]
