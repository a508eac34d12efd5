# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Configuration optimization from aggregated feedback, and the convergence rule.
"""

import json
import logging

from typing import Callable, Sequence

from .feedback import aggregate_feedback
from ..budget.manager import TimeBudgetManager, _monotonic_ms
from ..llm.base import InferenceService, Message
from ..storage.config_store import ConfigStore, DEFAULT_PROMPTS
from ..types.budget_types import TimeBudget, resolve_budget
from ..types.contracts import OptimizationPayload
from ..types.loop_types import (
    AggregatedMetrics,
    FeedbackReport,
    IterationRecord,
    OptimizationResult,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

FALLBACK_SUMMARY = "Optimization failed, keeping current prompts"
FALLBACK_CONVERGENCE = 0.5
SECONDARY_CONVERGENCE = 0.7


def has_converged(records: Sequence[IterationRecord], threshold: float = 0.85) -> bool:
    """Decide convergence from this run's iteration records.

    Converged when the mean convergence score of the last two records reaches
    the threshold, or when it reaches 0.7 and the latest iteration proposed no
    configuration changes. Never true with fewer than two records.
    """
    if len(records) < 2:
        return False
    recent = records[-2:]
    avg_score = sum(r.convergence_score for r in recent) / len(recent)
    no_changes = records[-1].change_count == 0
    return avg_score >= threshold or (avg_score >= SECONDARY_CONVERGENCE and no_changes)


class PromptOptimizer:
    """Proposes new configuration versions from feedback."""

    MODULE_NAME = "prompt_optimization"

    def __init__(
        self,
        inference: InferenceService,
        store: ConfigStore,
        modules: Sequence[str] | None = None,
        budget: TimeBudget | None = None,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        self.inference = inference
        self.store = store
        self.modules = list(modules or DEFAULT_PROMPTS)
        self.budget = budget or resolve_budget(self.MODULE_NAME)
        self._clock = clock

    def build_prompt(
        self,
        reports: list[FeedbackReport],
        aggregated: AggregatedMetrics,
    ) -> str:
        current = self.store.current_versions(self.modules)
        prompts = "\n".join(
            f"\n### {module} (v{version.version})\n{version.payload}\n"
            for module, version in current.items()
        )
        detail = [
            {
                "persona": r.persona_name,
                "satisfaction": r.overall_satisfaction,
                "module_feedback": [
                    {
                        "module": mf.module,
                        "rating": mf.rating,
                        "issues": mf.specific_issues,
                        "suggestions": mf.suggestions,
                    }
                    for mf in r.module_feedback
                ],
                "prioritized_suggestions": [
                    s.model_dump() for s in r.prioritized_suggestions if s.priority in ("critical", "high")
                ],
            }
            for r in reports
        ]
        issues = "\n".join(f"{i}. {issue}" for i, issue in enumerate(aggregated.top_issues, 1))
        suggestions = "\n".join(f"{i}. {s}" for i, s in enumerate(aggregated.top_suggestions, 1))

        return f"""You are optimizing prompts for an AI interview system based on user feedback.

CURRENT PROMPTS:
{prompts}

AGGREGATED METRICS:
- Average Satisfaction: {aggregated.average_satisfaction}/10
- Recommendation Rate: {aggregated.recommendation_rate}%
- Module Ratings: {json.dumps(aggregated.module_ratings)}

TOP ISSUES:
{issues}

TOP SUGGESTIONS:
{suggestions}

DETAILED FEEDBACK:
{json.dumps(detail, indent=2)}

Based on this feedback, optimize the prompts. For each module that needs improvement:
1. Identify specific issues from feedback
2. Propose concrete changes to the prompt
3. Explain expected impact

Only the modules {', '.join(self.modules)} can be updated. Also suggest how to evolve the persona generator to create more challenging test cases.

Return JSON:
{{
  "updates": [
    {{"module": "module_name", "new_payload": "the improved prompt text", "changelog": "what changed and why", "expected_impact": "expected improvement"}}
  ],
  "persona_generator_update": "suggestions for making personas more challenging",
  "summary": "overall optimization summary",
  "convergence_score": number (0-1, how close to optimal based on feedback)
}}"""

    async def optimize(self, reports: list[FeedbackReport], iteration: int) -> OptimizationResult:
        """Propose and store new configuration versions.

        Inference failure keeps the current configuration and reports the
        neutral convergence score. Store failures propagate.
        """
        self.store.initialize_defaults({m: DEFAULT_PROMPTS[m] for m in self.modules if m in DEFAULT_PROMPTS})
        aggregated = aggregate_feedback(reports)

        budget = TimeBudgetManager(self.MODULE_NAME, self.budget, clock=self._clock)
        try:
            # A timeout yields None and takes the fallback below
            payload = await budget.with_timeout(
                self.inference.complete(
                    [Message(role="user", content=self.build_prompt(reports, aggregated))],
                    schema="optimization_result",
                ),
                fallback=None,
            )
        except Exception as e:
            logger.error(f"Error optimizing prompts: {e}")
            payload = None

        if not isinstance(payload, OptimizationPayload):
            logger.warning("Optimizer fell back to the current configuration")
            return OptimizationResult(
                iteration=iteration,
                summary=FALLBACK_SUMMARY,
                convergence_score=FALLBACK_CONVERGENCE,
                is_fallback=True,
            )

        versions = []
        for update in payload.updates:
            if update.module not in self.modules:
                logger.warning(f"Ignoring update for unknown module {update.module}")
                continue
            snapshot = {"avg_satisfaction": aggregated.average_satisfaction}
            if update.module in aggregated.module_ratings:
                snapshot["module_rating"] = aggregated.module_ratings[update.module]
            versions.append(
                self.store.append(
                    update.module,
                    update.new_payload,
                    changelog=update.changelog,
                    metrics_snapshot=snapshot,
                    iteration=iteration,
                )
            )

        return OptimizationResult(
            iteration=iteration,
            config_versions=versions,
            persona_generator_update=payload.persona_generator_update,
            summary=payload.summary,
            convergence_score=payload.convergence_score,
        )
