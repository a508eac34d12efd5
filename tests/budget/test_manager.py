# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Tests for the time budget manager."""
import asyncio

import pytest

from agent_loop.budget.manager import TimeBudgetManager
from agent_loop.types.budget_types import (
    DEFAULT_BUDGET,
    PriorityMode,
    TimeBudget,
    resolve_budget,
)
from agent_loop.types.errors import BudgetTimeoutError


def make_manager(clock, max_ms=10_000, mode=PriorityMode.BALANCED, warning=None):
    budget = TimeBudget(max_duration_ms=max_ms, priority_mode=mode, warning_threshold_ms=warning)
    return TimeBudgetManager("test", budget, clock=clock)


class TestTimeBudget:
    def test_rejects_non_positive_duration(self):
        with pytest.raises(ValueError):
            TimeBudget(max_duration_ms=0)

    def test_rejects_warning_beyond_duration(self):
        with pytest.raises(ValueError):
            TimeBudget(max_duration_ms=1000, warning_threshold_ms=2000)

    def test_near_timeout_defaults_to_seventy_percent(self):
        assert TimeBudget(max_duration_ms=10_000).near_timeout_ms == 7000

    def test_named_budgets_and_overrides(self):
        assert resolve_budget("hint_system").priority_mode == PriorityMode.SPEED
        assert resolve_budget("unknown_module") == DEFAULT_BUDGET

        override = TimeBudget(max_duration_ms=500, priority_mode=PriorityMode.SPEED)
        assert resolve_budget("hint_system", {"hint_system": override}) is override


class TestClock:
    def test_elapsed_plus_remaining_is_max(self, clock):
        manager = make_manager(clock)
        for step in (0, 1500, 2500, 3000):
            clock.advance(step)
            assert manager.elapsed() + manager.remaining() == pytest.approx(10_000)

    def test_remaining_never_negative(self, clock):
        manager = make_manager(clock, max_ms=1000)
        clock.advance(5000)
        assert manager.remaining() == 0
        assert manager.is_expired()

    def test_expired_exactly_at_max(self, clock):
        manager = make_manager(clock, max_ms=1000)
        clock.advance(999)
        assert not manager.is_expired()
        clock.advance(1)
        assert manager.is_expired()

    def test_near_timeout(self, clock):
        manager = make_manager(clock, max_ms=10_000)
        clock.advance(6999)
        assert not manager.is_near_timeout()
        clock.advance(1)
        assert manager.is_near_timeout()

    def test_explicit_warning_threshold(self, clock):
        manager = make_manager(clock, max_ms=10_000, warning=2000)
        clock.advance(2000)
        assert manager.is_near_timeout()

    def test_has_time_for(self, clock):
        manager = make_manager(clock, max_ms=5000)
        clock.advance(1000)
        assert manager.has_time_for(4000)
        assert not manager.has_time_for(4001)

    def test_reset_restarts_clock(self, clock):
        manager = make_manager(clock)
        manager.checkpoint("first")
        clock.advance(4000)
        manager.reset()
        assert manager.elapsed() == 0
        assert manager.report().checkpoints == []


class TestRecommendedMaxSteps:
    @pytest.mark.parametrize(
        "mode,expected",
        [(PriorityMode.SPEED, 2), (PriorityMode.BALANCED, 3), (PriorityMode.QUALITY, 5)],
    )
    def test_capped_by_priority_mode(self, clock, mode, expected):
        manager = make_manager(clock, max_ms=100_000, mode=mode)
        assert manager.recommended_max_steps(1000) == expected

    def test_capped_by_remaining_time(self, clock):
        manager = make_manager(clock, max_ms=10_000, mode=PriorityMode.QUALITY)
        clock.advance(5500)
        # 4500ms left at 2000ms per step
        assert manager.recommended_max_steps(2000) == 2

    def test_zero_when_expired(self, clock):
        manager = make_manager(clock, max_ms=1000)
        clock.advance(2000)
        assert manager.recommended_max_steps(100) == 0

    @pytest.mark.parametrize("avg", [0, -5])
    def test_rejects_non_positive_step_cost(self, clock, avg):
        manager = make_manager(clock)
        with pytest.raises(ValueError):
            manager.recommended_max_steps(avg)


class TestShouldContinueThinking:
    def test_speed_stops_at_acceptable_quality(self, clock):
        manager = make_manager(clock, mode=PriorityMode.SPEED)
        assert manager.should_continue_thinking(0.5)
        assert not manager.should_continue_thinking(0.6)

    def test_quality_pursues_target(self, clock):
        manager = make_manager(clock, mode=PriorityMode.QUALITY)
        assert manager.should_continue_thinking(0.7, target_quality=0.8)
        clock.advance(8500)
        assert not manager.should_continue_thinking(0.7, target_quality=0.8)

    def test_balanced_stops_late_in_budget(self, clock):
        manager = make_manager(clock)
        assert manager.should_continue_thinking(0.5)
        clock.advance(8100)
        assert not manager.should_continue_thinking(0.1)


class TestReport:
    def test_report_contains_checkpoints(self, clock):
        manager = make_manager(clock)
        manager.checkpoint("start")
        clock.advance(1200)
        manager.checkpoint("after_tool")

        report = manager.report()
        assert report.module_name == "test"
        assert [c.name for c in report.checkpoints] == ["start", "after_tool"]
        assert report.checkpoints[1].elapsed_ms == 1200
        assert report.remaining_ms == 8800
        assert not report.is_expired

    def test_named_budget_from_module_name(self, clock):
        manager = TimeBudgetManager("prompt_optimization", clock=clock)
        assert manager.max_duration_ms == 120_000
        assert manager.priority_mode == PriorityMode.QUALITY


class TestWithTimeout:
    @pytest.mark.asyncio
    async def test_returns_result_in_time(self):
        manager = TimeBudgetManager("fast", TimeBudget(max_duration_ms=5000))

        async def work():
            return 42

        assert await manager.with_timeout(work()) == 42

    @pytest.mark.asyncio
    async def test_returns_fallback_on_expiry(self):
        manager = TimeBudgetManager("slow", TimeBudget(max_duration_ms=50))
        result = await manager.with_timeout(asyncio.sleep(2, result="late"), fallback="fallback")
        assert result == "fallback"

    @pytest.mark.asyncio
    async def test_raises_without_fallback(self):
        manager = TimeBudgetManager("slow", TimeBudget(max_duration_ms=50))
        with pytest.raises(BudgetTimeoutError) as excinfo:
            await manager.with_timeout(asyncio.sleep(2))
        assert excinfo.value.module_name == "slow"
        assert excinfo.value.max_duration_ms == 50

    @pytest.mark.asyncio
    async def test_none_is_a_valid_fallback(self):
        manager = TimeBudgetManager("slow", TimeBudget(max_duration_ms=50))
        assert await manager.with_timeout(asyncio.sleep(2), fallback=None) is None
