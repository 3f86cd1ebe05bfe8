"""Credential store serving the server-side keys from settings."""

from __future__ import annotations

from consensus_orchestrator.config.settings import Settings
from consensus_orchestrator.schemas import KeySet


class SettingsCredentialStore:
    """Same key set for every caller; used for preview runs and the CLI."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_keys(self, user_id: str | None) -> KeySet:
        return KeySet(**self.settings.resolved_provider_keys())
