"""Prompt construction for rounds, evaluation, search, synthesis and progression.

Every function here is pure: same inputs, same string, no I/O. The workflow
relies on this when a step is re-run after a resume.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from consensus_orchestrator.schemas import Evaluation, ModelSelection, RoundResult, SearchResult

PROGRESSION_EXCERPT_CHARS = 300

SEARCH_CLASSIFIER_SYSTEM_PROMPT = """You are a search necessity evaluator. Determine if a question requires current, up-to-date web information to answer well.

Answer "yes" if the question:
- Asks about recent events, news, or current state
- Requires latest statistics, prices, or data
- References specific recent dates or timeframes
- Needs current best practices or recommendations that change frequently

Answer "no" if the question:
- Is about timeless concepts (math, logic, general knowledge)
- Can be answered with established facts or principles
- Is hypothetical or opinion-based
- Asks for explanations of well-established topics

Return ONLY "yes" or "no", nothing else."""

SEARCH_QUERY_SYSTEM_PROMPT = """You are a search query generator. Given a user's question, generate a focused web search query that would find the most relevant, current information to answer it.

Guidelines:
- Keep the query concise (3-8 words)
- Focus on key concepts and entities
- Remove conversational fluff

Return ONLY the search query, nothing else."""


def build_initial_prompt(user_prompt: str) -> str:
    return user_prompt


def build_refinement_prompt(
    original_prompt: str,
    self_id: str,
    self_label: str,
    prior_responses: Mapping[str, str],
    selections: Sequence[ModelSelection],
    next_round: int,
    prior_evaluation: Evaluation | None = None,
) -> str:
    """Ask one model to reconsider its answer in light of the others.

    With ``prior_evaluation`` (targeted refinement) the evaluator's key
    differences and areas of agreement are surfaced so the model addresses them
    directly instead of revising free-form.
    """
    own_response = prior_responses.get(self_id, "")
    others = "\n\n".join(
        f"{selection.label.upper()}:\n{prior_responses.get(selection.id, '')}"
        for selection in selections
        if selection.id != self_id
    )

    sections = [
        f"Original Question: {original_prompt}",
        f"Round {next_round} - Refinement Phase",
        f"## Your Previous Response\n{own_response}",
        f"## Other Models' Responses\n{others}",
    ]

    if prior_evaluation is None:
        instructions = (
            "Please refine your answer considering these other perspectives:\n"
            "1. Address any divergences or disagreements\n"
            "2. Incorporate valid points from other models\n"
            "3. Clarify any ambiguities\n"
            "4. Move toward consensus while maintaining accuracy\n\n"
            "Provide your refined response."
        )
    else:
        sections.append(_evaluator_insights(self_label, prior_evaluation))
        instructions = (
            "Please refine your answer:\n"
            "1. Focus on resolving the key differences identified above\n"
            "2. Build on the areas of agreement\n"
            "3. Correct your position where another model is more accurate, "
            "and defend it with evidence where you are confident\n"
            "4. Keep the answer complete and self-contained\n\n"
            "Provide your refined response."
        )

    return "\n\n".join(sections) + "\n\n---\n\n" + instructions


def _evaluator_insights(self_label: str, evaluation: Evaluation) -> str:
    lines = [
        "## Evaluator Insights",
        f"You are {self_label}. An independent evaluator scored the previous round "
        f"at {evaluation.score}/100.",
    ]
    if evaluation.key_differences:
        lines.append("Key differences to resolve:")
        lines.extend(f"- {item}" for item in evaluation.key_differences)
    if evaluation.areas_of_agreement:
        lines.append("Areas of agreement:")
        lines.extend(f"- {item}" for item in evaluation.areas_of_agreement)
    return "\n".join(lines)


def build_search_augmented_prompt(base_prompt: str, results: Sequence[SearchResult]) -> str:
    if not results:
        return base_prompt
    rendered = "\n\n".join(
        f"[{index}] {result.title}\nURL: {result.url}\n{result.content}"
        for index, result in enumerate(results, start=1)
    )
    return (
        f"{base_prompt}\n\n---\n\n"
        "## Web Search Results\n"
        "Use these current results where relevant and cite the URL when you rely on one.\n\n"
        f"{rendered}"
    )


def build_evaluation_system_prompt(consensus_threshold: int, enable_search: bool = False) -> str:
    search_guidance = ""
    if enable_search:
        search_guidance = (
            "\n\nSEARCH: If the disagreement comes from missing or outdated facts that a web "
            "search could settle, set needsMoreInfo = true and put a 3-8 word query in "
            "suggestedSearchQuery. Otherwise set needsMoreInfo = false and "
            'suggestedSearchQuery = "".'
        )
    else:
        search_guidance = '\n\nAlways set needsMoreInfo = false and suggestedSearchQuery = "".'

    return f"""You are a rigorous consensus evaluator analyzing AI model responses.

First identify the question type (FACTUAL, ANALYTICAL or OPINION), then catalog the
differences between the responses: factual contradictions and missing key facts weigh
most, different reasoning or approach next, coverage gaps after that, and tone or
structure differences barely count.

Start at 100 and subtract penalties by severity. Calibration:
- 90-100: near-identical content, wording differences only
- 75-89: same core answer, minor coverage differences
- 50-74: same direction, meaningful differences
- 30-49: contradictions or competing conclusions
- 0-29: opposite or mutually exclusive answers
When in doubt between two ranges, choose the lower one. Structural similarity must not
inflate the score.

Consensus threshold: {consensus_threshold}%
Set isGoodEnough = true only if score >= {consensus_threshold}.{search_guidance}

OUTPUT: a single JSON object with exactly these fields:
- score: number 0-100
- summary: 1-2 sentence conversational summary
- emoji: one emoji matching the score band
- vibe: one of "celebration" (90-100), "agreement" (75-89), "mixed" (50-74), "disagreement" (30-49), "clash" (0-29)
- areasOfAgreement: array of 3-5 strings
- keyDifferences: array of 3-5 strings (a JSON array, not a numbered list)
- reasoning: question type, penalties applied and justification
- isGoodEnough: boolean
- needsMoreInfo: boolean
- suggestedSearchQuery: string"""


def build_evaluation_prompt(
    responses: Mapping[str, str],
    selections: Sequence[ModelSelection],
    round_number: int,
) -> str:
    rendered = "\n\n".join(
        f"--- {selection.label.upper()} ---\n{responses.get(selection.id, '')}"
        for selection in selections
    )
    return (
        f"Round {round_number}\n\n"
        f"Responses to evaluate ({len(selections)} models):\n\n"
        f"{rendered}\n\n"
        "Identify every difference, apply the weighted penalties, and return the JSON object."
    )


def build_synthesis_prompt(
    original_prompt: str,
    final_responses: Mapping[str, str],
    selections: Sequence[ModelSelection],
) -> str:
    responses_text = "\n\n---\n\n".join(
        f"{selection.label}:\n{final_responses.get(selection.id, '')}" for selection in selections
    )
    return f"""You are synthesizing a consensus response from {len(selections)} AI models.

Original Question: {original_prompt}

Final Responses:
---
{responses_text}

Create a single, unified response that:
1. Incorporates the key insights from all models
2. Presents a balanced, consensus view
3. Acknowledges any remaining differences if they exist
4. Provides a clear, coherent answer
5. Does NOT use any emojis or unicode symbols

Generate the consensus response."""


def build_progression_prompt(
    original_prompt: str,
    rounds: Sequence[RoundResult],
    selections: Sequence[ModelSelection],
) -> str:
    rounds_summary = "\n\n---\n\n".join(_format_round(item, selections) for item in rounds)
    return f"""Analyze how AI models evolved across {len(rounds)} rounds of consensus-building.

Original Question: {original_prompt}

Rounds Data:
---
{rounds_summary}

Create a 2-4 paragraph narrative summary. Use markdown formatting. No emojis."""


def _format_round(result: RoundResult, selections: Sequence[ModelSelection]) -> str:
    excerpts = "\n".join(
        f"  - **{selection.label}**: {_excerpt(result.responses.get(selection.id, ''))}"
        for selection in selections
    )
    evaluation = result.evaluation or Evaluation()
    return (
        f"**Round {result.round}**:\n"
        f"- Score: {evaluation.score}%\n"
        f"- Summary: {evaluation.summary}\n\n"
        f"{excerpts}"
    )


def _excerpt(text: str) -> str:
    if len(text) <= PROGRESSION_EXCERPT_CHARS:
        return text
    return text[:PROGRESSION_EXCERPT_CHARS] + "..."
