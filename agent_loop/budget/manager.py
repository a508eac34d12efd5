# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Per-execution clock and step-count governor.

A `TimeBudgetManager` is owned by exactly one execution. Expiry is a signal for
the caller to wrap up, not an error; only `with_timeout` without a fallback
raises.
"""

import math
import time
import asyncio
import logging

from typing import Any, Awaitable, Callable, TypeVar
from pydantic import BaseModel

from ..types.budget_types import (
    STEP_CAPS,
    PriorityMode,
    TimeBudget,
    resolve_budget,
)
from ..types.errors import BudgetTimeoutError

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

T = TypeVar("T")

_MISSING: Any = object()


class Checkpoint(BaseModel):
    name: str
    elapsed_ms: float


class BudgetReport(BaseModel):
    module_name: str
    budget: TimeBudget
    elapsed_ms: float
    remaining_ms: float
    is_expired: bool
    checkpoints: list[Checkpoint]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class TimeBudgetManager:
    """Tracks elapsed time against a fixed `TimeBudget`.

    Args:
        module_name: Name of the module the budget belongs to, used in logs
            and to look up a named budget when ``budget`` is omitted.
        budget: Explicit budget. Defaults to the named budget for the module.
        clock: Millisecond clock. Defaults to the monotonic clock.
    """

    def __init__(
        self,
        module_name: str,
        budget: TimeBudget | None = None,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        self.module_name = module_name
        self.budget = budget or resolve_budget(module_name)
        self._clock = clock
        self._start = clock()
        self._checkpoints: list[Checkpoint] = []

    @property
    def max_duration_ms(self) -> int:
        return self.budget.max_duration_ms

    @property
    def priority_mode(self) -> PriorityMode:
        return self.budget.priority_mode

    def elapsed(self) -> float:
        """Milliseconds since the budget started."""
        return self._clock() - self._start

    def remaining(self) -> float:
        """Milliseconds left, never negative."""
        return max(0.0, self.budget.max_duration_ms - self.elapsed())

    def is_expired(self) -> bool:
        return self.elapsed() >= self.budget.max_duration_ms

    def is_near_timeout(self) -> bool:
        return self.elapsed() >= self.budget.near_timeout_ms

    def has_time_for(self, cost_ms: float) -> bool:
        return self.remaining() >= cost_ms

    def recommended_max_steps(self, avg_step_cost_ms: float = 2000) -> int:
        """Number of reasoning steps that fit, capped by the priority mode."""
        if avg_step_cost_ms <= 0:
            raise ValueError("avg_step_cost_ms must be positive")
        fits = math.floor(self.remaining() / avg_step_cost_ms)
        return max(0, min(fits, STEP_CAPS[self.budget.priority_mode]))

    def should_continue_thinking(
        self, current_quality: float, target_quality: float = 0.8
    ) -> bool:
        """Whether another refinement pass is worth its time at `current_quality`.

        Library API for callers running their own refine-until-good loops. The
        ReAct engine stops on a final answer and does not consult it.
        """
        remaining = self.remaining()

        if self.budget.priority_mode == PriorityMode.SPEED:
            # Stop as soon as quality is merely acceptable
            return remaining > 1000 and current_quality < 0.6

        if self.budget.priority_mode == PriorityMode.QUALITY:
            return remaining > 2000 and current_quality < target_quality

        time_ratio = self.elapsed() / self.budget.max_duration_ms
        if time_ratio > 0.6 and target_quality - current_quality < 0.2:
            return False
        if time_ratio > 0.8:
            return False
        return current_quality < target_quality

    def checkpoint(self, name: str) -> None:
        self._checkpoints.append(Checkpoint(name=name, elapsed_ms=self.elapsed()))

    def report(self) -> BudgetReport:
        return BudgetReport(
            module_name=self.module_name,
            budget=self.budget,
            elapsed_ms=self.elapsed(),
            remaining_ms=self.remaining(),
            is_expired=self.is_expired(),
            checkpoints=list(self._checkpoints),
        )

    def reset(self) -> None:
        self._start = self._clock()
        self._checkpoints = []

    async def with_timeout(self, operation: Awaitable[T], fallback: T = _MISSING) -> T:
        """Race ``operation`` against the remaining budget.

        On expiry the operation is cancelled and ``fallback`` is returned, or
        `BudgetTimeoutError` is raised when no fallback was given.
        """
        try:
            return await asyncio.wait_for(operation, timeout=self.remaining() / 1000.0)
        except asyncio.TimeoutError:
            logger.warning(
                f"[{self.module_name}] operation timed out after {self.elapsed():.0f}ms "
                f"(budget {self.budget.max_duration_ms}ms)"
            )
            if fallback is _MISSING:
                raise BudgetTimeoutError(self.module_name, self.budget.max_duration_ms)
            return fallback
