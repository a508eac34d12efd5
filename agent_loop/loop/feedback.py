# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Persona feedback on a finished simulation, and its aggregation per iteration.
"""

import math
import logging

from collections import Counter
from typing import Callable

from ..budget.manager import TimeBudgetManager, _monotonic_ms
from ..llm.base import InferenceService, Message
from ..types.budget_types import TimeBudget, resolve_budget
from ..types.contracts import FeedbackPayload
from ..types.loop_types import (
    AggregatedMetrics,
    FeedbackReport,
    Persona,
    SimulationResult,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

PRIORITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}
FEEDBACK_MODULES = "question_generation|hint_system|response_analysis|overall_flow|persona_simulation"


def round_half_up(value: float, digits: int = 0) -> float:
    scale = 10**digits
    return math.floor(value * scale + 0.5) / scale


def criticality_label(criticality: float) -> tuple[str, str]:
    """(self description, requested tone) for a criticality level."""
    if criticality >= 7:
        return "very demanding", "very critical and demanding"
    if criticality >= 4:
        return "moderately critical", "balanced but thorough"
    return "easy-going", "generally positive but honest"


def fallback_feedback(persona: Persona, simulation: SimulationResult) -> FeedbackReport:
    return FeedbackReport(
        persona_id=persona.id,
        persona_name=persona.name,
        simulation_id=simulation.id,
        iteration=simulation.iteration,
        overall_satisfaction=5,
        would_recommend=True,
        emotional_journey="Unable to generate detailed feedback",
        raw_feedback="Feedback generation failed",
        is_fallback=True,
    )


class FeedbackGenerator:
    """Has the persona review the interview it just went through."""

    MODULE_NAME = "feedback_generation"

    def __init__(
        self,
        inference: InferenceService,
        budget: TimeBudget | None = None,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        self.inference = inference
        self.budget = budget or resolve_budget(self.MODULE_NAME)
        self._clock = clock

    def build_prompt(self, persona: Persona, simulation: SimulationResult) -> str:
        personality = persona.personality
        description, tone = criticality_label(personality.criticality)
        conversation = "\n\n".join(
            f"{'Candidate' if m.role == 'user' else 'Interviewer'}: "
            f"{m.content[:200]}{'...' if len(m.content) > 200 else ''}"
            for m in simulation.transcript
            if m.role != "system"
        )
        job = simulation.target_job or persona.target_job

        return f"""You are {persona.name}, a job candidate who just completed a mock interview. Generate a detailed feedback report.

YOUR PERSONA:
- Background: {persona.background.years_of_experience:g} years as {persona.background.current_role}
- Criticality level: {personality.criticality:g}/10 ({description})
- Patience level: {personality.patience:g}/10
- Feedback style: {persona.feedback_style}

INTERVIEW SUMMARY:
- Target: {job.position} at {job.company}
- Total questions: {simulation.total_questions}
- Hints used: {simulation.hints_used}
- Completed: {'Yes' if simulation.completed_successfully else 'No'}
- Duration: {simulation.duration_ms / 1000:.0f} seconds

CONVERSATION:
{conversation}

Generate a comprehensive feedback report as this persona would give it. Be {tone}.

Return JSON:
{{
  "overall_satisfaction": number (1-10),
  "would_recommend": boolean,
  "module_feedback": [
    {{
      "module": "{FEEDBACK_MODULES}",
      "rating": number (1-10),
      "strengths": ["..."],
      "weaknesses": ["..."],
      "specific_issues": ["..."],
      "suggestions": ["..."]
    }}
  ],
  "emotional_journey": "Describe how you felt throughout the interview",
  "frustrating_moments": ["..."],
  "positive_highlights": ["..."],
  "prioritized_suggestions": [
    {{"priority": "critical|high|medium|low", "suggestion": "...", "affected_module": "...", "expected_impact": "..."}}
  ],
  "raw_feedback": "Your overall thoughts in 2-3 paragraphs"
}}"""

    async def generate(self, persona: Persona, simulation: SimulationResult) -> FeedbackReport:
        """Generate the persona's report; never raises for inference failures."""
        budget = TimeBudgetManager(self.MODULE_NAME, self.budget, clock=self._clock)
        try:
            payload = await budget.with_timeout(
                self.inference.complete(
                    [Message(role="user", content=self.build_prompt(persona, simulation))],
                    schema="feedback_report",
                ),
                fallback=None,
            )
            if payload is None:
                logger.error(f"Feedback for {persona.name} timed out")
            elif isinstance(payload, FeedbackPayload):
                return FeedbackReport(
                    persona_id=persona.id,
                    persona_name=persona.name,
                    simulation_id=simulation.id,
                    iteration=simulation.iteration,
                    **payload.model_dump(),
                )
            else:
                logger.error(f"Unexpected feedback payload type: {type(payload).__name__}")
        except Exception as e:
            logger.error(f"Error generating feedback: {e}")

        logger.warning(f"Using fallback feedback for {persona.name}")
        return fallback_feedback(persona, simulation)


def aggregate_feedback(reports: list[FeedbackReport]) -> AggregatedMetrics:
    """Summarize one iteration's reports.

    Mean satisfaction is rounded to one decimal and the recommendation rate is
    an integer percentage. Issues are ranked by how often they were reported
    (case and surrounding whitespace ignored); suggestions by priority.
    """
    if not reports:
        return AggregatedMetrics()

    avg_satisfaction = sum(r.overall_satisfaction for r in reports) / len(reports)
    rec_rate = sum(1 for r in reports if r.would_recommend) / len(reports)

    ratings: dict[str, list[float]] = {}
    issues: Counter[str] = Counter()
    suggestions = []
    for report in reports:
        for mf in report.module_feedback:
            ratings.setdefault(mf.module, []).append(mf.rating)
            issues.update(issue.lower().strip() for issue in mf.specific_issues)
        suggestions.extend(report.prioritized_suggestions)

    # sorted() is stable, so equal priorities keep their reporting order
    ranked = sorted(suggestions, key=lambda s: PRIORITY_ORDER[s.priority])

    return AggregatedMetrics(
        average_satisfaction=round_half_up(avg_satisfaction, 1),
        recommendation_rate=int(round_half_up(rec_rate * 100)),
        module_ratings={m: sum(r) / len(r) for m, r in ratings.items()},
        top_issues=[issue for issue, _ in issues.most_common(5)],
        top_suggestions=[s.suggestion for s in ranked[:5]],
    )
