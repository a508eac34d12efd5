# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The three kinds of grader.

Every grader maps ``(output, context)`` to a `GraderScore` in [0, 1] and never
raises: evaluation problems become a neutral 0.5 with an explanatory note.
"""

import json
import asyncio
import logging

from abc import ABC, abstractmethod
from typing import Any, Callable
from pydantic import BaseModel

from .similarity import jaccard_similarity, uniqueness_score
from ..llm.base import InferenceService, Message
from ..types.contracts import JudgeVerdict
from ..types.errors import InferenceError
from ..types.grade_types import GraderScore

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

NEUTRAL_SCORE = 0.5

JUDGE_SYSTEM_PROMPT = """You are an expert evaluator. Score the output from 0 to 1 (0 = terrible, 1 = perfect).
Return JSON format: { "score": number, "feedback": "brief explanation" }"""


def render(value: Any) -> str:
    """Render an output or context object as text for prompts and comparisons."""
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json(indent=2)
    return json.dumps(value, indent=2, default=str)


class Grader(ABC):
    kind: str = ""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description

    @abstractmethod
    async def grade(self, output: Any, context: Any) -> GraderScore:
        pass

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"


class RuleGrader(Grader):
    """A pure, deterministic check."""

    kind = "rule"

    def __init__(
        self,
        name: str,
        check: Callable[[Any, Any], float],
        description: str = "",
        pass_mark: float = 0.8,
    ):
        super().__init__(name, description)
        self.check = check
        self.pass_mark = pass_mark

    async def grade(self, output: Any, context: Any) -> GraderScore:
        try:
            score = max(0.0, min(1.0, float(self.check(output, context))))
        except Exception as e:
            logger.error(f"Rule grader '{self.name}' failed: {e}")
            return GraderScore(
                grader_name=self.name,
                score=NEUTRAL_SCORE,
                feedback=f"Error during evaluation: {e}",
            )
        return GraderScore(
            grader_name=self.name,
            score=score,
            feedback="Passed" if score >= self.pass_mark else "Needs improvement",
        )


class JudgeGrader(Grader):
    """Delegates the verdict to the inference service.

    The prompt template may reference ``{{output}}`` and ``{{context}}``.
    """

    kind = "judge"

    def __init__(
        self,
        name: str,
        prompt: str,
        inference: InferenceService,
        description: str = "",
        timeout_s: float = 30.0,
    ):
        super().__init__(name, description)
        self.prompt = prompt
        self.inference = inference
        self.timeout_s = timeout_s

    def build_messages(self, output: Any, context: Any) -> list[Message]:
        prompt = self.prompt.replace("{{output}}", render(output)).replace(
            "{{context}}", render(context)
        )
        return [
            Message(role="system", content=JUDGE_SYSTEM_PROMPT),
            Message(role="user", content=prompt),
        ]

    async def grade(self, output: Any, context: Any) -> GraderScore:
        try:
            verdict = await asyncio.wait_for(
                self.inference.complete(
                    self.build_messages(output, context), schema="judge_verdict"
                ),
                timeout=self.timeout_s,
            )
            if not isinstance(verdict, JudgeVerdict):
                raise InferenceError(f"Unexpected judge response: {verdict!r}")
            return GraderScore(
                grader_name=self.name, score=verdict.score, feedback=verdict.feedback
            )
        except Exception as e:
            logger.warning(f"Judge grader '{self.name}' failed: {type(e).__name__}: {e}")
            return GraderScore(
                grader_name=self.name,
                score=NEUTRAL_SCORE,
                feedback=f"LLM evaluation failed ({type(e).__name__}); neutral score substituted",
            )


class SimilarityGrader(Grader):
    """Penalises output that overlaps too much with a comparison set.

    Scores follow `uniqueness_score` and bottom out at 0.0 once similarity is
    0.5 past the threshold.
    """

    kind = "similarity"

    def __init__(
        self,
        name: str,
        compare_with: list[str] | Callable[[Any], list[str]],
        threshold: float = 0.5,
        description: str = "",
        text_of: Callable[[Any], str] = render,
    ):
        super().__init__(name, description)
        self.compare_with = compare_with
        self.threshold = threshold
        self.text_of = text_of

    def comparison_set(self, context: Any) -> list[str]:
        if callable(self.compare_with):
            return list(self.compare_with(context))
        return list(self.compare_with)

    async def grade(self, output: Any, context: Any) -> GraderScore:
        try:
            text = self.text_of(output)
            max_similarity, most_similar = 0.0, ""
            for candidate in self.comparison_set(context):
                similarity = jaccard_similarity(text, candidate)
                if similarity > max_similarity:
                    max_similarity, most_similar = similarity, candidate[:50]
        except Exception as e:
            logger.error(f"Similarity grader '{self.name}' failed: {e}")
            return GraderScore(
                grader_name=self.name,
                score=NEUTRAL_SCORE,
                feedback=f"Error during similarity check: {e}",
            )

        score = uniqueness_score(max_similarity, self.threshold)
        if max_similarity > self.threshold:
            feedback = (
                f"Too similar to existing content ({max_similarity * 100:.1f}% "
                f'similar to "{most_similar}...")'
            )
        else:
            feedback = "Sufficiently unique"
        return GraderScore(grader_name=self.name, score=score, feedback=feedback)
