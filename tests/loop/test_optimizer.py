# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Tests for configuration optimization and the convergence rule."""
import asyncio

import pytest

from agent_loop.loop.optimizer import (
    FALLBACK_CONVERGENCE,
    FALLBACK_SUMMARY,
    PromptOptimizer,
    has_converged,
)
from agent_loop.types.budget_types import TimeBudget
from agent_loop.types.loop_types import ConfigVersion, FeedbackReport, IterationRecord


def record(iteration, score, changes=0):
    return IterationRecord(
        run_id="run_test",
        iteration=iteration,
        convergence_score=score,
        config_versions=[
            ConfigVersion(module=f"m{i}", version=2, payload="p") for i in range(changes)
        ],
    )


class TestHasConverged:
    def test_high_scores(self):
        assert has_converged([record(1, 0.86), record(2, 0.90, changes=2)])

    def test_secondary_rule_without_changes(self):
        assert has_converged([record(1, 0.72), record(2, 0.68)])

    def test_secondary_rule_blocked_by_changes(self):
        assert not has_converged([record(1, 0.72), record(2, 0.68, changes=1)])

    def test_single_record(self):
        assert not has_converged([record(1, 0.99)])

    def test_only_last_two_count(self):
        assert has_converged([record(1, 0.1), record(2, 0.9), record(3, 0.9, changes=1)])

    def test_custom_threshold(self):
        records = [record(1, 0.8), record(2, 0.8, changes=1)]
        assert not has_converged(records)
        assert has_converged(records, threshold=0.75)


def feedback(feedback_factory, satisfaction=7):
    return FeedbackReport(persona_id="p", persona_name="Alex", simulation_id="s", **feedback_factory(satisfaction))


class TestPromptOptimizer:
    @pytest.mark.asyncio
    async def test_stores_new_versions(self, scripted, store, feedback_factory):
        inference = scripted(
            [
                {
                    "updates": [
                        {"module": "hint_system", "new_payload": "Better hints", "changelog": "clearer"},
                        {"module": "mystery_module", "new_payload": "??"},
                    ],
                    "persona_generator_update": "harder personas",
                    "summary": "improved hints",
                    "convergence_score": 0.8,
                }
            ]
        )
        optimizer = PromptOptimizer(inference, store)

        result = await optimizer.optimize([feedback(feedback_factory)], iteration=2)

        assert [v.module for v in result.config_versions] == ["hint_system"]
        version = result.config_versions[0]
        assert version.version == 2
        assert version.iteration == 2
        assert version.metrics_snapshot == {"avg_satisfaction": 7.0}
        assert store.current("hint_system").payload == "Better hints"
        assert store.history("mystery_module") == []
        assert result.convergence_score == 0.8
        assert result.persona_generator_update == "harder personas"
        assert not result.is_fallback

    @pytest.mark.asyncio
    async def test_snapshot_includes_module_rating(self, scripted, store, feedback_factory):
        inference = scripted(
            [{"updates": [{"module": "question_generation", "new_payload": "q"}], "convergence_score": 0.4}]
        )
        result = await PromptOptimizer(inference, store).optimize([feedback(feedback_factory, 6)], 1)
        assert result.config_versions[0].metrics_snapshot == {"avg_satisfaction": 6.0, "module_rating": 6.0}

    @pytest.mark.asyncio
    async def test_prompt_shows_current_configuration(self, scripted, store, feedback_factory):
        store.initialize_defaults()
        store.append("hint_system", "Custom hint prompt")
        inference = scripted([{"updates": [], "convergence_score": 0.5}])

        await PromptOptimizer(inference, store).optimize([feedback(feedback_factory)], 1)

        prompt = inference.calls[0][0][0].content
        assert "### hint_system (v2)\nCustom hint prompt" in prompt
        assert "Average Satisfaction: 7.0/10" in prompt
        assert "1. questions too generic" in prompt

    @pytest.mark.asyncio
    async def test_fallback_keeps_configuration(self, scripted, store, feedback_factory):
        optimizer = PromptOptimizer(scripted([RuntimeError("timeout")]), store)

        result = await optimizer.optimize([feedback(feedback_factory)], 1)

        assert result.is_fallback
        assert result.summary == FALLBACK_SUMMARY
        assert result.convergence_score == FALLBACK_CONVERGENCE
        assert result.config_versions == []
        assert store.current("hint_system").version == 1

    @pytest.mark.asyncio
    async def test_fallback_when_budget_runs_out(self, scripted, store, feedback_factory):
        async def stall():
            await asyncio.sleep(5)

        optimizer = PromptOptimizer(scripted([stall()]), store, budget=TimeBudget(max_duration_ms=50))

        result = await asyncio.wait_for(optimizer.optimize([feedback(feedback_factory)], 1), timeout=2)

        assert result.is_fallback
        assert result.summary == FALLBACK_SUMMARY
        assert result.config_versions == []
