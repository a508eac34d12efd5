# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Records produced and consumed by the iteration orchestrator.

Every record here is written once and never edited afterwards; a record's
`id` is generated at creation and is the key it is persisted under.
"""

import uuid

from datetime import datetime
from typing import Literal
from pydantic import BaseModel, Field


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


MODULE_NAMES = (
    "question_generation",
    "hint_system",
    "response_analysis",
    "overall_flow",
    "persona_simulation",
)


# ==================== Personas ====================


class Background(BaseModel):
    years_of_experience: float = Field(..., ge=0)
    current_role: str
    current_company: str = ""
    education: str = ""
    skills: list[str] = Field(default_factory=list)


class TargetJob(BaseModel):
    company: str
    position: str


class Personality(BaseModel):
    communication_style: Literal["verbose", "concise", "rambling", "structured"] = "concise"
    confidence_level: Literal["high", "medium", "low"] = "medium"
    criticality: float = 5
    patience: float = 5
    trust: float | None = None


class InterviewBehavior(BaseModel):
    typical_response_length: Literal["brief", "medium", "detailed"] = "medium"
    uses_examples: bool = False
    asks_for_clarification: bool = False
    gets_nervous: bool = False


class PersonaDraft(BaseModel):
    """A persona as proposed by the generator, before it is stamped and checked."""

    name: str
    background: Background
    target_job: TargetJob
    personality: Personality = Field(default_factory=Personality)
    interview_behavior: InterviewBehavior = Field(default_factory=InterviewBehavior)
    resume_text: str = ""
    situation: str = ""
    feedback_style: str = ""


class Persona(PersonaDraft):
    """A synthetic test subject, referenced but never mutated by simulations."""

    id: str = Field(default_factory=lambda: new_id("persona"))
    iteration: int = 0
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def criticality(self) -> float:
        return self.personality.criticality

    @property
    def trust(self) -> float:
        return self.personality.trust if self.personality.trust is not None else 5


# ==================== Simulations ====================


class SimulatedMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)
    question_type: str | None = None
    hint_requested: bool = False
    hint_content: str | None = None


class SimulationResult(BaseModel):
    id: str = Field(default_factory=lambda: new_id("sim"))
    persona_id: str
    persona_name: str = ""
    target_job: TargetJob | None = None
    iteration: int = 0
    transcript: list[SimulatedMessage] = Field(default_factory=list)
    total_questions: int = 0
    hints_used: int = 0
    completed_successfully: bool = True
    abort_reasons: list[str] = Field(default_factory=list)
    duration_ms: float = 0.0
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def outcome_flags(self) -> dict[str, bool | int]:
        return {
            "completed_successfully": self.completed_successfully,
            "hints_used": self.hints_used,
            "aborted_turns": len(self.abort_reasons),
        }


# ==================== Feedback ====================


class ModuleFeedback(BaseModel):
    module: str
    rating: float = Field(..., ge=1, le=10)
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    specific_issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class PrioritizedSuggestion(BaseModel):
    priority: Literal["critical", "high", "medium", "low"]
    suggestion: str
    affected_module: str = ""
    expected_impact: str = ""


class FeedbackReport(BaseModel):
    id: str = Field(default_factory=lambda: new_id("feedback"))
    persona_id: str
    persona_name: str = ""
    simulation_id: str
    iteration: int = 0
    overall_satisfaction: float = Field(..., ge=1, le=10)
    would_recommend: bool = False
    module_feedback: list[ModuleFeedback] = Field(default_factory=list)
    emotional_journey: str = ""
    frustrating_moments: list[str] = Field(default_factory=list)
    positive_highlights: list[str] = Field(default_factory=list)
    prioritized_suggestions: list[PrioritizedSuggestion] = Field(default_factory=list)
    raw_feedback: str = ""
    is_fallback: bool = False
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def per_module_ratings(self) -> dict[str, float]:
        return {mf.module: mf.rating for mf in self.module_feedback}


class AggregatedMetrics(BaseModel):
    average_satisfaction: float = 0.0
    recommendation_rate: int = 0
    module_ratings: dict[str, float] = Field(default_factory=dict)
    top_issues: list[str] = Field(default_factory=list)
    top_suggestions: list[str] = Field(default_factory=list)


# ==================== Configuration versions ====================


class ConfigVersion(BaseModel):
    """One immutable, numbered revision of a module's tunable behaviour."""

    id: str = ""
    module: str
    version: int = Field(..., ge=1)
    payload: str
    changelog: str = ""
    metrics_snapshot: dict[str, float] = Field(default_factory=dict)
    iteration: int = 0
    created_at: datetime = Field(default_factory=datetime.now)

    def model_post_init(self, __context) -> None:
        if not self.id:
            self.id = f"config_{self.module}_v{self.version}"


class OptimizationResult(BaseModel):
    iteration: int
    config_versions: list[ConfigVersion] = Field(default_factory=list)
    persona_generator_update: str = ""
    summary: str = ""
    convergence_score: float = Field(0.5, ge=0.0, le=1.0)
    is_fallback: bool = False
    created_at: datetime = Field(default_factory=datetime.now)


# ==================== Iterations and summaries ====================


class IterationRecord(BaseModel):
    """The orchestrator's record of one completed iteration."""

    id: str = Field(default_factory=lambda: new_id("iteration"))
    run_id: str
    iteration: int = Field(..., ge=1)
    target_criticality: float = 0
    persona_ids: list[str] = Field(default_factory=list)
    simulation_ids: list[str] = Field(default_factory=list)
    feedback_ids: list[str] = Field(default_factory=list)
    config_versions: list[ConfigVersion] = Field(default_factory=list)
    aggregated_metrics: AggregatedMetrics = Field(default_factory=AggregatedMetrics)
    convergence_score: float = Field(0.5, ge=0.0, le=1.0)
    optimization_summary: str = ""
    duration_ms: float = 0.0
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def change_count(self) -> int:
        return len(self.config_versions)


class FinalMetrics(BaseModel):
    average_satisfaction: float = 0.0
    recommendation_rate: float = 0.0


class LoopSummary(BaseModel):
    id: str = Field(default_factory=lambda: new_id("summary"))
    run_id: str
    variant: Literal["standard", "progressive"] = "standard"
    total_iterations: int = 0
    converged: bool = False
    convergence_reason: str = ""
    final_metrics: FinalMetrics = Field(default_factory=FinalMetrics)
    iterations: list[IterationRecord] = Field(default_factory=list)
    total_duration_ms: float = 0.0
    completed_at: datetime = Field(default_factory=datetime.now)


class BandMetrics(BaseModel):
    average_satisfaction: float = 0.0
    recommendation_rate: int = 0
    completion_rate: float = 0.0
    hint_usage_rate: float = 0.0
    module_ratings: dict[str, float] = Field(default_factory=dict)


class ProgressiveIterationRecord(IterationRecord):
    band_min: float = 0
    band_max: float = 0
    metrics: BandMetrics = Field(default_factory=BandMetrics)
    quality_gates_passed: bool = False
    quality_gate_failures: list[str] = Field(default_factory=list)

    @property
    def band_label(self) -> str:
        return f"{self.band_min:g}-{self.band_max:g}"


class ProgressiveSummary(LoopSummary):
    variant: Literal["standard", "progressive"] = "progressive"
    target_met: bool = False
    satisfaction_by_band: dict[str, float] = Field(default_factory=dict)
    iterations: list[ProgressiveIterationRecord] = Field(default_factory=list)
    report: str = ""
