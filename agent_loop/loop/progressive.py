# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The progressive loop variant.

Iterations cycle through criticality bands, each persona batch targeting the
middle of its band. Every iteration is checked against quality gates, and
the loop stops once satisfaction has stabilised over a window of iterations
or every band has met its satisfaction target together with the overall
recommendation target.
"""

import logging

from .orchestrator import LoopRunner
from .feedback import round_half_up
from ..config import ProgressiveConfig
from ..llm.base import InferenceService
from ..storage import LoopRepository
from ..types.event_types import EventType
from ..types.loop_types import (
    BandMetrics,
    FeedbackReport,
    FinalMetrics,
    ProgressiveIterationRecord,
    ProgressiveSummary,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def check_quality_gates(metrics: BandMetrics, config: ProgressiveConfig) -> list[str]:
    """Return the failed gates (empty when all pass)."""
    gates = config.quality_gates
    failures = []
    if metrics.average_satisfaction < gates.min_satisfaction_per_band:
        failures.append(
            f"Satisfaction {metrics.average_satisfaction:.1f} < {gates.min_satisfaction_per_band:g}"
        )
    if metrics.hint_usage_rate > gates.max_hint_usage_rate:
        failures.append(
            f"Hint usage {metrics.hint_usage_rate * 100:.0f}% > {gates.max_hint_usage_rate * 100:g}%"
        )
    if metrics.completion_rate < gates.min_completion_rate:
        failures.append(
            f"Completion rate {metrics.completion_rate * 100:.0f}% < {gates.min_completion_rate * 100:g}%"
        )
    return failures


def check_convergence(
    records: list[ProgressiveIterationRecord], config: ProgressiveConfig
) -> tuple[bool, str]:
    """Converged when satisfaction spread over the last window is within the threshold."""
    if len(records) < config.convergence_window:
        return False, "Not enough iterations"

    satisfactions = [r.metrics.average_satisfaction for r in records[-config.convergence_window:]]
    if max(satisfactions) - min(satisfactions) > config.convergence_threshold:
        return False, "Metrics still improving"

    avg = sum(satisfactions) / len(satisfactions)
    if avg >= config.target_satisfaction:
        return True, f"Target satisfaction {config.target_satisfaction:g} reached with stable metrics"
    return True, f"Metrics stabilized but below target ({avg:.1f} < {config.target_satisfaction:g})"


def satisfaction_by_band(
    records: list[ProgressiveIterationRecord],
    reports: dict[int, list[FeedbackReport]],
) -> dict[str, float]:
    by_band: dict[str, list[float]] = {}
    for record in records:
        scores = [r.overall_satisfaction for r in reports.get(record.iteration, [])]
        if scores:
            by_band.setdefault(record.band_label, []).extend(scores)
    return {band: sum(s) / len(s) for band, s in by_band.items()}


def build_report(
    summary: ProgressiveSummary,
    config: ProgressiveConfig,
) -> str:
    """Render a markdown summary of a progressive run."""
    iterations = summary.iterations
    lines = [
        "# Progressive Agent Loop Summary",
        "",
        f"## Result: {'TARGET MET' if summary.target_met else 'TARGET NOT MET'}",
        "",
        f"- **Converged**: {'Yes' if summary.converged else 'No'}"
        + (f" ({summary.convergence_reason})" if summary.convergence_reason else ""),
        f"- **Total Iterations**: {len(iterations)}",
        f"- **Target Satisfaction**: {config.target_satisfaction:g}/10",
        f"- **Target Recommendation Rate**: {config.target_recommendation_rate:g}%",
        "",
        "## Iteration Summary",
        "",
        "| Iteration | Band | Satisfaction | Recommendation | Quality Gates |",
        "|-----------|------|--------------|----------------|---------------|",
    ]
    for record in iterations:
        lines.append(
            f"| {record.iteration} | {record.band_label} | "
            f"{record.metrics.average_satisfaction:.1f}/10 | "
            f"{record.metrics.recommendation_rate}% | "
            f"{'PASS' if record.quality_gates_passed else 'FAIL'} |"
        )

    lines += ["", "## Key Insights", ""]
    if iterations:
        ranked = sorted(iterations, key=lambda r: r.metrics.average_satisfaction, reverse=True)
        best, worst = ranked[0], ranked[-1]
        lines.append(
            f"- **Best Performance**: Iteration {best.iteration} (Band {best.band_label}) "
            f"with {best.metrics.average_satisfaction:.1f}/10 satisfaction"
        )
        lines.append(
            f"- **Worst Performance**: Iteration {worst.iteration} (Band {worst.band_label}) "
            f"with {worst.metrics.average_satisfaction:.1f}/10 satisfaction"
        )

    module_ratings: dict[str, list[float]] = {}
    for record in iterations:
        for module, rating in record.metrics.module_ratings.items():
            module_ratings.setdefault(module, []).append(rating)

    lines += ["", "## Module Performance", ""]
    for module, ratings in module_ratings.items():
        lines.append(f"- **{module}**: {sum(ratings) / len(ratings):.1f}/10")

    if summary.satisfaction_by_band:
        lines += ["", "## Satisfaction by Criticality Band", ""]
        for band, satisfaction in summary.satisfaction_by_band.items():
            lines.append(f"- **{band}**: {satisfaction:.1f}/10")

    return "\n".join(lines)


class ProgressiveAgentLoop(LoopRunner):
    """Cycles through criticality bands until satisfaction targets hold."""

    def __init__(
        self,
        config: ProgressiveConfig,
        inference: InferenceService,
        repository: LoopRepository,
        **kwargs,
    ):
        super().__init__(
            inference,
            repository,
            time_budgets=config.time_budgets,
            questions_per_simulation=config.questions_per_simulation,
            max_hints_per_simulation=config.max_hints_per_simulation,
            max_concurrency=config.max_concurrency,
            seed=config.seed,
            **kwargs,
        )
        self.config = config

    def band_targets_met(
        self,
        by_band: dict[str, float],
        recommendation_rate: float,
    ) -> bool:
        labels = {band.label for band in self.config.criticality_bands}
        if set(by_band) != labels:
            return False
        return (
            all(s >= self.config.quality_gates.min_satisfaction_per_band for s in by_band.values())
            and recommendation_rate >= self.config.target_recommendation_rate
        )

    async def run(self) -> ProgressiveSummary:
        config = self.config
        start = self._clock()
        await self._emit(EventType.LOOP_STARTED, "progressive", max_iterations=config.max_iterations)
        self.store.initialize_defaults()

        records: list[ProgressiveIterationRecord] = []
        reports_by_iteration: dict[int, list[FeedbackReport]] = {}
        guidance = ""
        converged = False
        reason = ""

        for iteration in range(1, config.max_iterations + 1):
            band = config.band_for(iteration)
            logger.info(f"--- Iteration {iteration} | Criticality Band: {band.label} ---")
            outcome = await self.run_iteration(
                iteration,
                band.target,
                band.persona_count,
                guidance,
                timeout_ms=config.iteration_timeout_ms,
            )
            reports_by_iteration[iteration] = outcome.reports

            simulations = outcome.simulations
            sim_count = len(simulations)
            metrics = BandMetrics(
                average_satisfaction=outcome.aggregated.average_satisfaction,
                recommendation_rate=outcome.aggregated.recommendation_rate,
                completion_rate=(
                    sum(1 for s in simulations if s.completed_successfully) / sim_count if sim_count else 0.0
                ),
                hint_usage_rate=(
                    sum(s.hints_used for s in simulations) / (sim_count * self.simulator.max_hints)
                    if sim_count and self.simulator.max_hints
                    else 0.0
                ),
                module_ratings=outcome.aggregated.module_ratings,
            )
            failures = check_quality_gates(metrics, config)
            if failures:
                logger.warning(f"[Iteration {iteration}] Quality gates failed: {', '.join(failures)}")

            record = ProgressiveIterationRecord(
                run_id=self.run_id,
                iteration=iteration,
                target_criticality=band.target,
                persona_ids=[p.id for p in outcome.personas],
                simulation_ids=[s.id for s in simulations],
                feedback_ids=[r.id for r in outcome.reports],
                config_versions=outcome.optimization.config_versions,
                aggregated_metrics=outcome.aggregated,
                convergence_score=outcome.optimization.convergence_score,
                optimization_summary=outcome.optimization.summary,
                duration_ms=outcome.duration_ms,
                band_min=band.min,
                band_max=band.max,
                metrics=metrics,
                quality_gates_passed=not failures,
                quality_gate_failures=failures,
            )
            self.repository.save_iteration_record(record)
            records.append(record)
            await self._emit(
                EventType.ITERATION_COMPLETED,
                f"Iteration {iteration} band {band.label}: {metrics.average_satisfaction}/10",
                iteration=iteration,
                quality_gates_passed=not failures,
            )

            if iteration >= config.min_iterations:
                converged, reason = check_convergence(records, config)
                if converged:
                    logger.info(f"CONVERGED: {reason}")
                    await self._emit(EventType.LOOP_CONVERGED, reason, iteration=iteration)
                    break

            all_reports = [r for reports in reports_by_iteration.values() for r in reports]
            overall_rate = (
                sum(1 for r in all_reports if r.would_recommend) / len(all_reports) * 100
                if all_reports
                else 0.0
            )
            if self.band_targets_met(satisfaction_by_band(records, reports_by_iteration), overall_rate):
                converged = True
                reason = "Satisfaction targets met in every criticality band"
                logger.info(f"CONVERGED: {reason}")
                await self._emit(EventType.LOOP_CONVERGED, reason, iteration=iteration)
                break

            if iteration < config.max_iterations:
                guidance = await self.evolve_guidance(outcome, iteration, guidance)

        if not converged:
            reason = f"Reached max iterations ({config.max_iterations})"

        all_reports = [r for reports in reports_by_iteration.values() for r in reports]
        if all_reports:
            final_satisfaction = sum(r.overall_satisfaction for r in all_reports) / len(all_reports)
            final_rate = sum(1 for r in all_reports if r.would_recommend) / len(all_reports) * 100
        else:
            final_satisfaction = final_rate = 0.0

        summary = ProgressiveSummary(
            run_id=self.run_id,
            total_iterations=len(records),
            converged=converged,
            convergence_reason=reason,
            target_met=(
                final_satisfaction >= config.target_satisfaction
                and final_rate >= config.target_recommendation_rate
            ),
            final_metrics=FinalMetrics(
                average_satisfaction=round_half_up(final_satisfaction, 1),
                recommendation_rate=round_half_up(final_rate),
            ),
            satisfaction_by_band=satisfaction_by_band(records, reports_by_iteration),
            iterations=records,
            total_duration_ms=self._clock() - start,
        )
        summary.report = build_report(summary, config)
        self.repository.save_summary(summary)
        await self._emit(EventType.LOOP_COMPLETED, reason, converged=converged, target_met=summary.target_met)
        return summary
