# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Named, versioned output contracts.

Structured responses from the inference service are validated exactly once,
at the boundary, against one of the contracts registered here. Callers refer
to a contract by name (``"judge_verdict"``) or by pinned version
(``"judge_verdict@1"``).
"""

from typing import Any, Literal
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from .errors import ContractViolation
from .loop_types import (
    ModuleFeedback,
    PrioritizedSuggestion,
)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, float(value)))


class JudgeVerdict(BaseModel):
    score: float
    feedback: str = ""

    @field_validator("score")
    @classmethod
    def _clamp_score(cls, v: float) -> float:
        return _clamp(v, 0.0, 1.0)


class PersonaBatch(BaseModel):
    """Raw persona drafts; each one is checked on its own by the generator."""

    personas: list[Any]


class ModuleRating(ModuleFeedback):
    @field_validator("rating", mode="before")
    @classmethod
    def _clamp_rating(cls, v: float) -> float:
        return _clamp(v, 1, 10)


class FeedbackPayload(BaseModel):
    overall_satisfaction: float
    would_recommend: bool
    module_feedback: list[ModuleRating] = Field(default_factory=list)
    emotional_journey: str = ""
    frustrating_moments: list[str] = Field(default_factory=list)
    positive_highlights: list[str] = Field(default_factory=list)
    prioritized_suggestions: list[PrioritizedSuggestion] = Field(default_factory=list)
    raw_feedback: str = ""

    @field_validator("overall_satisfaction")
    @classmethod
    def _clamp_satisfaction(cls, v: float) -> float:
        return _clamp(v, 1, 10)


class ConfigUpdate(BaseModel):
    module: str
    new_payload: str
    changelog: str = ""
    expected_impact: str = ""


class OptimizationPayload(BaseModel):
    updates: list[ConfigUpdate] = Field(default_factory=list)
    persona_generator_update: str = ""
    summary: str = ""
    convergence_score: float

    @field_validator("convergence_score")
    @classmethod
    def _clamp_convergence(cls, v: float) -> float:
        return _clamp(v, 0.0, 1.0)


class InterviewQuestion(BaseModel):
    question: str
    question_type: Literal["opening", "follow_up", "new_topic", "deep_dive", "closing"] = "follow_up"
    reasoning: str = ""


class InterviewHint(BaseModel):
    hint: str
    framework: str = ""


# name -> {version -> model}
CONTRACTS: dict[str, dict[int, type[BaseModel]]] = {
    "judge_verdict": {1: JudgeVerdict},
    "persona_batch": {1: PersonaBatch},
    "feedback_report": {1: FeedbackPayload},
    "optimization_result": {1: OptimizationPayload},
    "interview_question": {1: InterviewQuestion},
    "interview_hint": {1: InterviewHint},
}


def get_contract(name: str) -> type[BaseModel]:
    """Resolve ``name`` or ``name@version`` to its model (latest version by default)."""
    base, _, version = name.partition("@")
    versions = CONTRACTS.get(base)
    if not versions:
        raise KeyError(f"Unknown output contract: {name}")
    if version:
        try:
            return versions[int(version)]
        except (KeyError, ValueError):
            raise KeyError(f"Unknown version of output contract: {name}")
    return versions[max(versions)]


def contract_json_schema(name: str) -> dict[str, Any]:
    return get_contract(name).model_json_schema()


def validate_contract(name: str, data: Any) -> BaseModel:
    """Validate raw structured output against a named contract.

    Raises:
        ContractViolation: if ``data`` does not satisfy the contract.
    """
    model = get_contract(name)
    # A bare list is accepted for single-list contracts such as persona_batch
    if isinstance(data, list) and len(model.model_fields) == 1:
        data = {next(iter(model.model_fields)): data}
    try:
        return TypeAdapter(model).validate_python(data)
    except ValidationError as e:
        raise ContractViolation(name, str(e))
