"""Pydantic schemas shared by the API, the workflow graph, and storage.

Wire payloads use camelCase keys (``modelId``, ``maxRounds``...). Every model
accepts both the camelCase alias and the Python field name on input and is
dumped with ``by_alias=True`` when it leaves the process.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Provider = Literal["anthropic", "openai", "google", "openrouter"]
Vibe = Literal["celebration", "agreement", "mixed", "disagreement", "clash"]
SearchTrigger = Literal["user", "model"]

VIBES: tuple[str, ...] = ("celebration", "agreement", "mixed", "disagreement", "clash")


class WireModel(BaseModel):
    """Base model for camelCase wire payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ModelSelection(WireModel):
    """One caller-chosen model slot (``model-1``...) for a run."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    provider: Provider
    model_id: str = Field(min_length=1)
    label: str = Field(min_length=1)


class KeySet(WireModel):
    """Provider credentials available to one caller. ``None`` means not configured."""

    model_config = ConfigDict(frozen=True)

    anthropic: str | None = None
    openai: str | None = None
    google: str | None = None
    openrouter: str | None = None
    tavily: str | None = None

    def get(self, provider: str) -> str | None:
        value = getattr(self, provider, None)
        return value or None


class Evaluation(WireModel):
    """Evaluator verdict for one round."""

    score: int = Field(default=0, ge=0, le=100)
    summary: str = ""
    emoji: str = ""
    vibe: Vibe = "mixed"
    areas_of_agreement: list[str] = Field(default_factory=list)
    key_differences: list[str] = Field(default_factory=list)
    reasoning: str = ""
    is_good_enough: bool = False
    needs_more_info: bool = False
    suggested_search_query: str = ""


class SearchResult(WireModel):
    title: str = ""
    url: str = ""
    content: str = ""
    score: float | None = None


class SearchData(WireModel):
    query: str
    results: list[SearchResult] = Field(default_factory=list)
    round: int = Field(ge=1)
    triggered_by: SearchTrigger


class RoundResult(WireModel):
    """Outcome of one executed round. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    round: int = Field(ge=1)
    responses: dict[str, str] = Field(default_factory=dict)
    evaluation: Evaluation | None = None
    search_data: SearchData | None = None
    has_error: bool = False


class ConsensusRequest(WireModel):
    """Request body for POST /consensus."""

    prompt: str = Field(min_length=1)
    models: list[ModelSelection] = Field(min_length=2, max_length=3)
    max_rounds: int | None = Field(default=None, ge=1, le=10)
    consensus_threshold: int | None = Field(default=None, ge=0, le=100)
    evaluator_model: str | None = None
    enable_search: bool = False
    use_targeted_refinement: bool = False

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt must not be blank")
        return value

    @field_validator("models")
    @classmethod
    def _unique_slots(cls, value: list[ModelSelection]) -> list[ModelSelection]:
        ids = [item.id for item in value]
        if len(set(ids)) != len(ids):
            raise ValueError("model slot ids must be unique")
        return value
