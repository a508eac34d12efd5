# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Predefined grader sets for the interview modules."""

from typing import Any

from .graders import Grader, JudgeGrader, RuleGrader, SimilarityGrader, render
from .multi_grader import MultiGrader
from ..llm.base import InferenceService
from ..types.grade_types import Aggregation

VALID_DECISIONS = ("follow_up", "new_topic", "deep_dive", "closing")
DIRECT_ANSWER_PATTERNS = ("the answer is", "you should say")

# Rule checks weigh less than judgement
DEFAULT_WEIGHTS: dict[str, float] = {
    "has_question": 0.5,
    "appropriate_length": 0.3,
    "not_repeated": 0.5,
    "has_hint": 0.5,
    "not_direct_answer": 0.8,
    "valid_decision": 0.5,
    "has_reasoning": 0.3,
    "relevance_quality": 1.0,
    "helpfulness": 1.0,
    "decision_quality": 1.0,
}


def _field(output: Any, name: str) -> Any:
    if output is None:
        return None
    if isinstance(output, dict):
        return output.get(name)
    return getattr(output, name, None)


def has_question(output: Any, context: Any) -> float:
    q = _field(output, "question")
    return 1.0 if q and len(q) > 10 and "?" in q else 0.0


def appropriate_length(output: Any, context: Any) -> float:
    q = _field(output, "question")
    if not q:
        return 0.0
    if len(q) < 20:
        return 0.3
    if len(q) > 500:
        return 0.7
    return 1.0


def has_hint(output: Any, context: Any) -> float:
    h = _field(output, "hint")
    return 1.0 if h and len(h) > 10 else 0.0


def not_direct_answer(output: Any, context: Any) -> float:
    h = (_field(output, "hint") or "").lower()
    return 0.3 if any(p in h for p in DIRECT_ANSWER_PATTERNS) else 1.0


def valid_decision(output: Any, context: Any) -> float:
    return 1.0 if _field(output, "question_type") in VALID_DECISIONS else 0.0


def has_reasoning(output: Any, context: Any) -> float:
    r = _field(output, "reasoning")
    return 1.0 if r and len(r) > 20 else 0.3


def question_text(output: Any) -> str:
    return _field(output, "question") or render(output)


def previous_questions(context: Any) -> list[str]:
    return list(_field(context, "previous_questions") or [])


def question_generation_graders(inference: InferenceService) -> list[Grader]:
    return [
        RuleGrader("has_question", has_question, "Output contains a valid question"),
        RuleGrader("appropriate_length", appropriate_length, "Question has an appropriate length"),
        SimilarityGrader(
            "not_repeated",
            previous_questions,
            threshold=0.6,
            description="Question does not repeat an earlier one",
            text_of=question_text,
        ),
        JudgeGrader(
            "relevance_quality",
            """Evaluate this interview question:
{{output}}

Context (job info, candidate background):
{{context}}

Score based on:
1. Relevance to the position (0-0.4)
2. Appropriate difficulty (0-0.3)
3. Clear and professional wording (0-0.3)""",
            inference,
            "Judge evaluates question relevance and quality",
        ),
    ]


def hint_system_graders(inference: InferenceService) -> list[Grader]:
    return [
        RuleGrader("has_hint", has_hint, "Output contains a valid hint"),
        RuleGrader("not_direct_answer", not_direct_answer, "Hint does not give away the answer"),
        JudgeGrader(
            "helpfulness",
            """Evaluate this interview hint:
{{output}}

Context (question, candidate's attempt):
{{context}}

Score based on:
1. Guides thinking without giving the answer (0-0.5)
2. Actionable and specific (0-0.3)
3. Encouraging tone (0-0.2)""",
            inference,
            "Judge evaluates hint helpfulness",
        ),
    ]


def next_question_graders(inference: InferenceService) -> list[Grader]:
    return [
        RuleGrader("valid_decision", valid_decision, "Decision type is valid"),
        RuleGrader("has_reasoning", has_reasoning, "Decision includes reasoning"),
        JudgeGrader(
            "decision_quality",
            """Evaluate this next question decision:
{{output}}

Context (conversation history, interview progress):
{{context}}

Score based on:
1. Appropriate decision type for the situation (0-0.4)
2. Good topic coverage strategy (0-0.3)
3. Considers the candidate's previous response quality (0-0.3)""",
            inference,
            "Judge evaluates decision appropriateness",
        ),
    ]


GRADER_SETS = {
    "question_generation": question_generation_graders,
    "hint_system": hint_system_graders,
    "next_question": next_question_graders,
}


def create_multi_grader(
    module_name: str,
    inference: InferenceService,
    custom_graders: list[Grader] | None = None,
) -> MultiGrader:
    """The weighted multi-grader for a module; unknown modules get no graders."""
    if custom_graders is not None:
        graders = custom_graders
    elif module_name in GRADER_SETS:
        graders = GRADER_SETS[module_name](inference)
    else:
        graders = []
    return MultiGrader(graders, aggregation=Aggregation.WEIGHTED, weights=DEFAULT_WEIGHTS)
