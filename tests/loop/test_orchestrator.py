# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""End-to-end tests for the standard iteration orchestrator."""
import asyncio
from unittest.mock import patch

import pytest

from agent_loop.config import LoopConfig
from agent_loop.events import EventBus
from agent_loop.loop import AgentLoop, run_agent_loop
from agent_loop.types.budget_types import TimeBudget
from agent_loop.types.event_types import EventType
from agent_loop.types.errors import PersistenceError


def small_config(**overrides):
    defaults = dict(max_iterations=3, personas_per_iteration=2, questions_per_simulation=2, seed=11)
    defaults.update(overrides)
    return LoopConfig(**defaults)


class TestLoopConfig:
    def test_target_criticality_ramps_and_caps(self):
        config = LoopConfig(initial_criticality=8, criticality_increment=1)
        assert [config.target_criticality(i) for i in (1, 2, 3, 4)] == [8, 9, 10, 10]

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_iterations": 0}, {"personas_per_iteration": 0}, {"convergence_threshold": 1.5}, {"max_concurrency": 0}],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            LoopConfig(**kwargs)


class TestAgentLoop:
    @pytest.mark.asyncio
    async def test_converges(self, scripted, repo, handler_factory):
        events = EventBus()
        inference = scripted(handler=handler_factory(convergence=0.9, personas_per_batch=2))
        loop = AgentLoop(small_config(), inference, repo, events=events)

        summary = await loop.run()

        assert summary.converged
        assert summary.total_iterations == 2
        assert summary.convergence_reason == "Converged after 2 iterations"
        assert summary.final_metrics.average_satisfaction == 8
        assert summary.final_metrics.recommendation_rate == 100

        first, second = summary.iterations
        assert first.target_criticality == 4 and second.target_criticality == 5
        assert len(first.persona_ids) == 2
        assert len(first.simulation_ids) == 2 and len(first.feedback_ids) == 2
        assert [v.version for v in first.config_versions] == [2]
        assert [v.version for v in second.config_versions] == [3]

        assert [r.id for r in repo.list_iteration_records(loop.run_id)] == [first.id, second.id]
        assert repo.get_summary(loop.run_id).converged
        assert len(repo.list_personas()) == 4
        assert len(repo.list_feedback(iteration=2)) == 2
        assert [v.version for v in loop.store.history("question_generation")] == [1, 2, 3]

        types = [e.type for e in events.get_events()]
        assert types[0] == EventType.LOOP_STARTED
        assert types[-1] == EventType.LOOP_COMPLETED
        assert types.count(EventType.ITERATION_COMPLETED) == 2
        assert types.count(EventType.CONFIG_VERSION_CREATED) == 2
        assert EventType.LOOP_CONVERGED in types
        loop_events = [e for e in events.get_events() if "agent" not in e.metadata]
        assert all(e.metadata["run_id"] == loop.run_id for e in loop_events)

    @pytest.mark.asyncio
    async def test_runs_to_max_iterations(self, scripted, repo, handler_factory):
        inference = scripted(handler=handler_factory(convergence=0.3))
        loop = AgentLoop(small_config(max_iterations=3, personas_per_iteration=1), inference, repo)

        summary = await loop.run()

        assert not summary.converged
        assert summary.total_iterations == 3
        assert summary.convergence_reason == "Reached max iterations (3)"

    @pytest.mark.asyncio
    async def test_guidance_evolves_between_iterations(self, scripted, repo, handler_factory):
        inference = scripted(handler=handler_factory(convergence=0.3))
        loop = AgentLoop(small_config(max_iterations=2, personas_per_iteration=1), inference, repo)

        await loop.run()

        persona_prompts = [call[0][0].content for call in inference.calls if call[1] == "PersonaBatch"]
        assert len(persona_prompts) == 2
        assert "GENERATOR STRATEGY" not in persona_prompts[0]
        assert "Make the next personas more detail-oriented." in persona_prompts[1]
        # existing personas feed the diversity context
        assert "Persona 1:" in persona_prompts[1]

    @pytest.mark.asyncio
    async def test_no_personas_means_no_feedback(self, scripted, repo, handler_factory):
        base = handler_factory()

        def handler(messages, contract):
            if contract == "PersonaBatch":
                return RuntimeError("persona model down")
            return base(messages, contract)

        events = EventBus()
        loop = AgentLoop(small_config(max_iterations=1), scripted(handler=handler), repo, events=events)

        summary = await loop.run()

        [record] = summary.iterations
        assert record.persona_ids == []
        assert record.convergence_score == 0.0
        assert record.optimization_summary == "No feedback collected"
        assert summary.final_metrics.average_satisfaction == 0
        assert len(events.get_events({EventType.PERSONA_REJECTED})) == 1

    @pytest.mark.asyncio
    async def test_fallback_feedback_is_reported(self, scripted, repo, handler_factory):
        base = handler_factory(convergence=0.3)

        def handler(messages, contract):
            if contract == "FeedbackPayload":
                return "not json"
            return base(messages, contract)

        events = EventBus()
        loop = AgentLoop(small_config(max_iterations=1, personas_per_iteration=1), scripted(handler=handler), repo, events=events)

        summary = await loop.run()

        assert summary.final_metrics.average_satisfaction == 5
        fallbacks = events.get_events({EventType.FALLBACK_USED})
        assert [e.content for e in fallbacks] == ["feedback"]

    @pytest.mark.asyncio
    async def test_stalled_feedback_falls_back_within_its_budget(self, scripted, repo, handler_factory):
        base = handler_factory(convergence=0.3)

        async def stall():
            await asyncio.sleep(5)

        def handler(messages, contract):
            if contract == "FeedbackPayload":
                return stall()
            return base(messages, contract)

        events = EventBus()
        config = small_config(
            max_iterations=1,
            personas_per_iteration=1,
            time_budgets={"feedback_generation": TimeBudget(max_duration_ms=200)},
        )
        loop = AgentLoop(config, scripted(handler=handler), repo, events=events)

        summary = await asyncio.wait_for(loop.run(), timeout=3)

        assert summary.total_iterations == 1
        assert summary.final_metrics.average_satisfaction == 5
        assert [e.content for e in events.get_events({EventType.FALLBACK_USED})] == ["feedback"]

    @pytest.mark.asyncio
    async def test_persistence_error_is_fatal(self, scripted, repo, handler_factory):
        loop = AgentLoop(small_config(), scripted(handler=handler_factory()), repo)

        with patch.object(repo, "save_simulation", side_effect=PersistenceError("disk full")):
            with pytest.raises(PersistenceError):
                await loop.run()

    @pytest.mark.asyncio
    async def test_units_past_the_timeout_are_dropped(self, scripted, repo, handler_factory, make_persona):
        base = handler_factory()

        async def stall():
            await asyncio.sleep(5)

        def handler(messages, contract):
            if contract is None and messages[0].content.startswith("You are an expert interviewer"):
                return stall()
            return base(messages, contract)

        loop = AgentLoop(small_config(), scripted(handler=handler), repo)
        loop.store.initialize_defaults()

        units = await loop.run_units([make_persona(), make_persona()], iteration=1, timeout_ms=50)

        assert units == []

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, scripted, repo, handler_factory, make_persona):
        base = handler_factory()
        active = {"now": 0, "peak": 0}

        async def tracked(messages, contract):
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
            await asyncio.sleep(0.01)
            active["now"] -= 1
            return base(messages, contract)

        def handler(messages, contract):
            if contract == "FeedbackPayload":
                return tracked(messages, contract)
            return base(messages, contract)

        loop = AgentLoop(small_config(max_concurrency=2), scripted(handler=handler), repo)
        loop.store.initialize_defaults()

        units = await loop.run_units([make_persona(name=f"P{i}") for i in range(5)], iteration=1)

        assert [sim.persona_name for sim, _ in units] == [f"P{i}" for i in range(5)]
        assert active["peak"] <= 2

    @pytest.mark.asyncio
    async def test_run_agent_loop_helper(self, scripted, tmp_path, handler_factory):
        db_path = tmp_path / "helper.db"
        summary = await run_agent_loop(
            small_config(max_iterations=1, personas_per_iteration=1),
            inference=scripted(handler=handler_factory()),
            db_path=db_path,
        )
        assert summary.total_iterations == 1
        assert db_path.exists()
