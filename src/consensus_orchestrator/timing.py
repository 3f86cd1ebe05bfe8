"""Wall-clock budget tracking for a workflow run.

Advisory only: warnings are surfaced as events and log lines, nothing aborts.
"""

from __future__ import annotations

import logging
import time

from pydantic import Field

from consensus_orchestrator.schemas import WireModel

logger = logging.getLogger(__name__)


class TimingData(WireModel):
    step: str
    elapsed_ms: int = Field(ge=0)
    elapsed_seconds: int = Field(ge=0)
    remaining_seconds: int = Field(ge=0)
    percent_used: int = Field(ge=0)
    warning: str | None = None

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def create_timing_data(
    step: str,
    start_time: float,
    *,
    budget_s: int,
    warning_percent: int = 75,
    critical_percent: int = 90,
    now: float | None = None,
) -> TimingData:
    """Measure elapsed time since ``start_time`` (epoch seconds) against ``budget_s``."""
    current = time.time() if now is None else now
    elapsed_ms = max(0, int((current - start_time) * 1000))
    elapsed_seconds = elapsed_ms // 1000
    budget_ms = budget_s * 1000
    remaining_seconds = max(0, budget_s - elapsed_seconds)
    percent_used = int(elapsed_ms * 100 / budget_ms) if budget_ms else 100

    warning: str | None = None
    if percent_used >= critical_percent:
        warning = (
            f"CRITICAL: {percent_used}% of the {budget_s}s budget used after {step}, "
            f"{remaining_seconds}s remaining"
        )
    elif percent_used >= warning_percent:
        warning = (
            f"WARNING: {percent_used}% of the {budget_s}s budget used after {step}, "
            f"{remaining_seconds}s remaining"
        )
    if warning:
        logger.warning("workflow_timing step=%s percent_used=%d", step, percent_used)

    return TimingData(
        step=step,
        elapsed_ms=elapsed_ms,
        elapsed_seconds=elapsed_seconds,
        remaining_seconds=remaining_seconds,
        percent_used=percent_used,
        warning=warning,
    )
