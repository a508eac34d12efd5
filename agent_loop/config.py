# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Agent loop configuration.

Configuration objects are plain dataclasses handed to each component at
construction; nothing here is a process-wide mutable singleton.
"""

import os

from pathlib import Path
from dataclasses import dataclass, field

from .types.budget_types import TimeBudget


@dataclass
class LoopConfig:
    """Configuration for the standard iteration orchestrator"""

    max_iterations: int = 10
    personas_per_iteration: int = 3
    initial_criticality: float = 4
    criticality_increment: float = 1
    convergence_threshold: float = 0.85

    # Simulation
    questions_per_simulation: int = 6
    max_hints_per_simulation: int = 3
    max_concurrency: int = 3  # personas simulated at once
    seed: int | None = None

    # Per-module overrides of the named time budgets
    time_budgets: dict[str, TimeBudget] = field(default_factory=dict)

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.personas_per_iteration < 1:
            raise ValueError("personas_per_iteration must be at least 1")
        if not 0 < self.convergence_threshold <= 1:
            raise ValueError("convergence_threshold must be in (0, 1]")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

    def target_criticality(self, iteration: int) -> float:
        return min(10, self.initial_criticality + (iteration - 1) * self.criticality_increment)


@dataclass
class CriticalityBand:
    min: float
    max: float
    persona_count: int = 1
    weight: float = 0.15

    @property
    def target(self) -> float:
        return (self.min + self.max) / 2

    @property
    def label(self) -> str:
        return f"{self.min:g}-{self.max:g}"


@dataclass
class QualityGates:
    min_satisfaction_per_band: float = 8
    max_hint_usage_rate: float = 0.3
    min_completion_rate: float = 0.9


def _default_bands() -> list[CriticalityBand]:
    bands = [CriticalityBand(min=c, max=c) for c in range(4, 10)]
    bands.append(CriticalityBand(min=10, max=10, weight=0.10))
    return bands


@dataclass
class ProgressiveConfig:
    """Configuration for the progressive (banded criticality) orchestrator"""

    target_satisfaction: float = 9
    target_recommendation_rate: float = 90
    max_iterations: int = 15
    min_iterations: int = 5
    criticality_bands: list[CriticalityBand] = field(default_factory=_default_bands)
    convergence_window: int = 4
    convergence_threshold: float = 0.3  # max satisfaction spread over the window
    iteration_timeout_ms: int = 600_000
    quality_gates: QualityGates = field(default_factory=QualityGates)

    questions_per_simulation: int = 6
    max_hints_per_simulation: int = 3
    max_concurrency: int = 3
    seed: int | None = None
    time_budgets: dict[str, TimeBudget] = field(default_factory=dict)

    def __post_init__(self):
        if not self.criticality_bands:
            raise ValueError("at least one criticality band is required")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.convergence_window < 2:
            raise ValueError("convergence_window must be at least 2")

    def band_for(self, iteration: int) -> CriticalityBand:
        return self.criticality_bands[(iteration - 1) % len(self.criticality_bands)]


@dataclass
class InferenceSettings:
    """Which inference service to talk to, and how"""

    provider: str = "anthropic"
    model: str | None = None
    base_url: str | None = None
    api_key: str | None = None
    temperature: float = 0.7
    max_tokens: int = 4096

    @classmethod
    def from_env(cls) -> "InferenceSettings":
        provider = os.getenv("AGENT_LOOP_PROVIDER", "anthropic").lower()
        api_key = {
            "anthropic": os.getenv("ANTHROPIC_API_KEY"),
            "openai": os.getenv("OPENAI_API_KEY"),
        }.get(provider)
        base_url = os.getenv("AGENT_LOOP_BASE_URL")
        if provider == "ollama" and base_url is None:
            base_url = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
        return cls(
            provider=provider,
            model=os.getenv("AGENT_LOOP_MODEL"),
            base_url=base_url,
            api_key=api_key,
            temperature=float(os.getenv("AGENT_LOOP_TEMPERATURE", "0.7")),
        )


DEFAULT_DB_PATH = Path(os.getenv("AGENT_LOOP_DB", "agent_loop.db"))
