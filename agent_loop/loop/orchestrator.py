# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The iteration orchestrator.

Each iteration moves through Generating -> Simulating -> Grading ->
Optimizing -> ConvergenceCheck. Personas within an iteration are simulated
concurrently; their results are merged only once every unit has finished or
timed out. Inference failures degrade to fallback values inside the
components, while a PersistenceError from the repository ends the run.
"""

import random
import asyncio
import logging

from pathlib import Path
from dataclasses import dataclass
from typing import Callable

from .feedback import FeedbackGenerator, aggregate_feedback
from .optimizer import PromptOptimizer, has_converged
from .personas import PersonaGenerator
from .simulator import InterviewSimulator
from ..agents.implementations import HintAgent, QuestionGenerationAgent
from ..budget.manager import _monotonic_ms
from ..config import DEFAULT_DB_PATH, InferenceSettings, LoopConfig
from ..events import EventBus
from ..grading.presets import create_multi_grader
from ..llm.base import InferenceService
from ..llm.factory import create_inference_service
from ..storage import ConfigStore, LoopRepository
from ..tools import default_registry, toolkits
from ..tools.base_tool import ToolRegistry
from ..types.budget_types import TimeBudget, resolve_budget
from ..types.event_types import EventType
from ..types.loop_types import (
    AggregatedMetrics,
    FeedbackReport,
    FinalMetrics,
    IterationRecord,
    LoopSummary,
    OptimizationResult,
    Persona,
    SimulationResult,
    new_id,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


@dataclass
class IterationOutcome:
    """Everything one iteration produced, before it is folded into a record."""

    personas: list[Persona]
    simulations: list[SimulationResult]
    reports: list[FeedbackReport]
    aggregated: AggregatedMetrics
    optimization: OptimizationResult
    duration_ms: float


class LoopRunner:
    """Wiring and per-iteration mechanics shared by both loop variants."""

    def __init__(
        self,
        inference: InferenceService,
        repository: LoopRepository,
        time_budgets: dict[str, TimeBudget] | None = None,
        questions_per_simulation: int = 6,
        max_hints_per_simulation: int = 3,
        max_concurrency: int = 3,
        seed: int | None = None,
        events: EventBus | None = None,
        tools: ToolRegistry | None = None,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        self.inference = inference
        self.repository = repository
        self.store = ConfigStore(repository)
        self.events = events or EventBus()
        self.time_budgets = dict(time_budgets or {})
        self.max_concurrency = max_concurrency
        self.run_id = new_id("run")
        self._clock = clock

        rng = random.Random(seed)
        tools = tools if tools is not None else default_registry()

        self.question_agent = QuestionGenerationAgent(
            inference,
            tools=tools.subset([t.TOOL_NAME for t in toolkits["question_generation"]]),
            budget=self.budget_for("question_generation"),
            grader=create_multi_grader("question_generation", inference),
            events=self.events,
            clock=clock,
        )
        self.hint_agent = HintAgent(
            inference,
            tools=tools.subset([t.TOOL_NAME for t in toolkits["hint_system"]]),
            budget=self.budget_for("hint_system"),
            grader=create_multi_grader("hint_system", inference),
            events=self.events,
            clock=clock,
        )
        self.persona_generator = PersonaGenerator(
            inference, rng=rng, budget=self.budget_for("persona_generation"), clock=clock
        )
        self.simulator = InterviewSimulator(
            inference,
            self.question_agent,
            self.hint_agent,
            questions_per_simulation=questions_per_simulation,
            max_hints=max_hints_per_simulation,
            budget=self.budget_for("interview_simulation"),
            rng=rng,
            clock=clock,
        )
        self.feedback_generator = FeedbackGenerator(
            inference, budget=self.budget_for("feedback_generation"), clock=clock
        )
        self.optimizer = PromptOptimizer(
            inference, self.store, budget=self.budget_for("prompt_optimization"), clock=clock
        )

    def budget_for(self, name: str) -> TimeBudget:
        return resolve_budget(name, self.time_budgets)

    async def _emit(self, event_type: EventType, content: str, **metadata) -> None:
        await self.events.emit(event_type, content, run_id=self.run_id, **metadata)

    async def _simulate_and_review(
        self,
        persona: Persona,
        iteration: int,
        payloads: dict[str, str],
        semaphore: asyncio.Semaphore,
    ) -> tuple[SimulationResult, FeedbackReport]:
        async with semaphore:
            simulation = await self.simulator.simulate(persona, iteration, payloads)
            await self._emit(
                EventType.SIMULATION_COMPLETED,
                f"{persona.name}: {'completed' if simulation.completed_successfully else 'incomplete'}",
                iteration=iteration,
                hints_used=simulation.hints_used,
            )
            report = await self.feedback_generator.generate(persona, simulation)
            if report.is_fallback:
                await self._emit(EventType.FALLBACK_USED, "feedback", iteration=iteration)
            await self._emit(
                EventType.FEEDBACK_GENERATED,
                f"{persona.name}: {report.overall_satisfaction:g}/10",
                iteration=iteration,
            )
            return simulation, report

    async def run_units(
        self,
        personas: list[Persona],
        iteration: int,
        timeout_ms: float | None = None,
    ) -> list[tuple[SimulationResult, FeedbackReport]]:
        """Simulate and review every persona concurrently.

        Units still running when `timeout_ms` elapses are cancelled and left
        out of the results.
        """
        if not personas:
            return []
        payloads = self.store.current_payloads()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            asyncio.create_task(self._simulate_and_review(p, iteration, payloads, semaphore))
            for p in personas
        ]
        done, pending = await asyncio.wait(
            tasks, timeout=timeout_ms / 1000 if timeout_ms is not None else None
        )
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"[Iteration {iteration}] {len(pending)} simulations timed out and were dropped")
            await asyncio.gather(*pending, return_exceptions=True)
        # Keep persona order; re-raise failures of finished units
        return [task.result() for task in tasks if task in done]

    async def run_iteration(
        self,
        iteration: int,
        target_criticality: float,
        count: int,
        guidance: str,
        timeout_ms: float | None = None,
    ) -> IterationOutcome:
        start = self._clock()
        await self._emit(
            EventType.ITERATION_STARTED,
            f"Iteration {iteration} (criticality {target_criticality:g})",
            iteration=iteration,
        )

        existing = self.repository.list_personas(limit=5)
        personas, rejected = await self.persona_generator.generate(
            iteration, existing, target_criticality, count, guidance=guidance
        )
        for reason in rejected:
            await self._emit(EventType.PERSONA_REJECTED, reason, iteration=iteration)
        for persona in personas:
            self.repository.save_persona(persona)
        logger.info(f"[Iteration {iteration}] Generated {len(personas)} personas")
        await self._emit(
            EventType.PERSONAS_GENERATED, f"{len(personas)} personas", iteration=iteration
        )

        units = await self.run_units(personas, iteration, timeout_ms)
        simulations = [sim for sim, _ in units]
        reports = [report for _, report in units]
        for simulation in simulations:
            self.repository.save_simulation(simulation)
        for report in reports:
            self.repository.save_feedback(report)

        aggregated = aggregate_feedback(reports)
        logger.info(
            f"[Iteration {iteration}] Satisfaction {aggregated.average_satisfaction}/10, "
            f"recommendation {aggregated.recommendation_rate}%"
        )

        if reports:
            optimization = await self.optimizer.optimize(reports, iteration)
        else:
            logger.warning(f"[Iteration {iteration}] No feedback collected, skipping optimization")
            optimization = OptimizationResult(
                iteration=iteration, summary="No feedback collected", convergence_score=0.0
            )
        if optimization.is_fallback:
            await self._emit(EventType.FALLBACK_USED, "optimization", iteration=iteration)
        for version in optimization.config_versions:
            await self._emit(
                EventType.CONFIG_VERSION_CREATED,
                f"{version.module} v{version.version}",
                iteration=iteration,
                module=version.module,
                version=version.version,
            )
        logger.info(
            f"[Iteration {iteration}] Updated {len(optimization.config_versions)} modules, "
            f"convergence score {optimization.convergence_score}"
        )

        return IterationOutcome(
            personas=personas,
            simulations=simulations,
            reports=reports,
            aggregated=aggregated,
            optimization=optimization,
            duration_ms=self._clock() - start,
        )

    async def evolve_guidance(self, outcome: IterationOutcome, iteration: int, current: str) -> str:
        if not outcome.reports:
            return current
        feedback_summary = "\n\n".join(r.raw_feedback for r in outcome.reports)
        if outcome.optimization.persona_generator_update:
            feedback_summary += f"\n\nOptimizer notes: {outcome.optimization.persona_generator_update}"
        return await self.persona_generator.evolve(feedback_summary, iteration)


class AgentLoop(LoopRunner):
    """The standard loop: criticality rises by a fixed increment each iteration."""

    def __init__(self, config: LoopConfig, inference: InferenceService, repository: LoopRepository, **kwargs):
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

    async def run(self) -> LoopSummary:
        config = self.config
        start = self._clock()
        await self._emit(EventType.LOOP_STARTED, "standard", max_iterations=config.max_iterations)
        self.store.initialize_defaults()

        records: list[IterationRecord] = []
        guidance = ""
        converged = False
        reason = f"Reached max iterations ({config.max_iterations})"

        for iteration in range(1, config.max_iterations + 1):
            target = config.target_criticality(iteration)
            outcome = await self.run_iteration(iteration, target, config.personas_per_iteration, guidance)

            record = IterationRecord(
                run_id=self.run_id,
                iteration=iteration,
                target_criticality=target,
                persona_ids=[p.id for p in outcome.personas],
                simulation_ids=[s.id for s in outcome.simulations],
                feedback_ids=[r.id for r in outcome.reports],
                config_versions=outcome.optimization.config_versions,
                aggregated_metrics=outcome.aggregated,
                convergence_score=outcome.optimization.convergence_score,
                optimization_summary=outcome.optimization.summary,
                duration_ms=outcome.duration_ms,
            )
            self.repository.save_iteration_record(record)
            records.append(record)
            await self._emit(
                EventType.ITERATION_COMPLETED,
                f"Iteration {iteration}: {outcome.aggregated.average_satisfaction}/10",
                iteration=iteration,
                convergence_score=record.convergence_score,
            )

            if has_converged(records, config.convergence_threshold):
                converged = True
                reason = f"Converged after {iteration} iterations"
                logger.info(reason)
                await self._emit(EventType.LOOP_CONVERGED, reason, iteration=iteration)
                break

            if iteration < config.max_iterations:
                guidance = await self.evolve_guidance(outcome, iteration, guidance)

        last = records[-1].aggregated_metrics
        summary = LoopSummary(
            run_id=self.run_id,
            total_iterations=len(records),
            converged=converged,
            convergence_reason=reason,
            final_metrics=FinalMetrics(
                average_satisfaction=last.average_satisfaction,
                recommendation_rate=last.recommendation_rate,
            ),
            iterations=records,
            total_duration_ms=self._clock() - start,
        )
        self.repository.save_summary(summary)
        await self._emit(EventType.LOOP_COMPLETED, reason, converged=converged)
        return summary


async def run_agent_loop(
    config: LoopConfig | None = None,
    inference: InferenceService | None = None,
    db_path: Path = DEFAULT_DB_PATH,
    events: EventBus | None = None,
) -> LoopSummary:
    """Run the standard loop end to end and return its summary."""
    config = config or LoopConfig()
    inference = inference or create_inference_service(InferenceSettings.from_env())
    loop = AgentLoop(config, inference, LoopRepository(db_path), events=events)
    return await loop.run()
