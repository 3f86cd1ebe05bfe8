"""Collaborators injected into one workflow run."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from consensus_orchestrator.config.settings import Settings
from consensus_orchestrator.events import EventSink, timing_event
from consensus_orchestrator.providers.base import BackendResolver
from consensus_orchestrator.search import SearchClient
from consensus_orchestrator.storage.base import ConversationStorage, UsageCounter
from consensus_orchestrator.timing import TimingData, create_timing_data

logger = logging.getLogger(__name__)


class SimulatedCrash(RuntimeError):
    """Raised after a configured step to emulate the host killing the process."""


@dataclass
class ConsensusRuntime:
    """Everything a graph node needs besides its state.

    Secrets live only in ``resolve_backend`` and ``search_client``; the
    checkpointed state never holds them.
    """

    events: EventSink
    storage: ConversationStorage
    resolve_backend: BackendResolver
    settings: Settings
    search_client: SearchClient | None = None
    usage_counter: UsageCounter | None = None

    def emit_timing(self, step: str, start_time: float) -> TimingData:
        timing = create_timing_data(
            step,
            start_time,
            budget_s=self.settings.workflow_budget_s,
            warning_percent=self.settings.timing_warning_percent,
            critical_percent=self.settings.timing_critical_percent,
        )
        self.events.emit(timing_event(timing))
        return timing

    def check_debug_crash(self, step: str) -> None:
        target = self.settings.debug_crash_after_step
        if target and step == target:
            logger.error("consensus_debug event=simulated_crash step=%s", step)
            raise SimulatedCrash(f"DEBUG: Simulated crash after {step}")
