# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from enum import Enum
from pydantic import BaseModel, Field, model_validator


class PriorityMode(str, Enum):
    SPEED = "speed"
    BALANCED = "balanced"
    QUALITY = "quality"


# Hard cap on reasoning steps for each priority mode
STEP_CAPS: dict[PriorityMode, int] = {
    PriorityMode.SPEED: 2,
    PriorityMode.BALANCED: 3,
    PriorityMode.QUALITY: 5,
}


class TimeBudget(BaseModel):
    """The wall-clock allowance of a single execution."""

    max_duration_ms: int = Field(..., gt=0)
    priority_mode: PriorityMode = PriorityMode.BALANCED
    warning_threshold_ms: int | None = Field(default=None, gt=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_warning(self) -> "TimeBudget":
        if (
            self.warning_threshold_ms is not None
            and self.warning_threshold_ms > self.max_duration_ms
        ):
            raise ValueError("warning_threshold_ms cannot exceed max_duration_ms")
        return self

    @property
    def near_timeout_ms(self) -> float:
        if self.warning_threshold_ms is not None:
            return float(self.warning_threshold_ms)
        return self.max_duration_ms * 0.7


DEFAULT_BUDGET = TimeBudget(max_duration_ms=10_000, priority_mode=PriorityMode.BALANCED)

TIME_BUDGETS: dict[str, TimeBudget] = {
    # Interactive modules
    "question_generation": TimeBudget(
        max_duration_ms=10_000,
        priority_mode=PriorityMode.QUALITY,
        warning_threshold_ms=7_000,
    ),
    "hint_system": TimeBudget(
        max_duration_ms=3_000,
        priority_mode=PriorityMode.SPEED,
        warning_threshold_ms=2_000,
    ),
    "next_question": TimeBudget(
        max_duration_ms=5_000,
        priority_mode=PriorityMode.BALANCED,
        warning_threshold_ms=3_500,
    ),
    "response_analysis": TimeBudget(
        max_duration_ms=5_000,
        priority_mode=PriorityMode.QUALITY,
        warning_threshold_ms=3_500,
    ),
    # Background loop modules
    "persona_generation": TimeBudget(
        max_duration_ms=30_000, priority_mode=PriorityMode.QUALITY
    ),
    "interview_simulation": TimeBudget(
        max_duration_ms=300_000, priority_mode=PriorityMode.QUALITY
    ),
    "feedback_generation": TimeBudget(
        max_duration_ms=60_000, priority_mode=PriorityMode.QUALITY
    ),
    "prompt_optimization": TimeBudget(
        max_duration_ms=120_000, priority_mode=PriorityMode.QUALITY
    ),
}


def resolve_budget(
    module_name: str,
    overrides: dict[str, TimeBudget] | None = None,
) -> TimeBudget:
    """Look up the budget for a module, preferring caller overrides."""
    if overrides and module_name in overrides:
        return overrides[module_name]
    return TIME_BUDGETS.get(module_name, DEFAULT_BUDGET)
