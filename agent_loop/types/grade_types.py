# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from enum import Enum
from pydantic import BaseModel, Field


class Aggregation(str, Enum):
    AVERAGE = "average"
    MIN = "min"
    WEIGHTED = "weighted"


class GraderScore(BaseModel):
    grader_name: str
    score: float = Field(..., ge=0.0, le=1.0)
    feedback: str | None = None


class GradeResult(BaseModel):
    """Aggregate score of one artifact plus every grader's contribution."""

    overall_score: float = Field(..., ge=0.0, le=1.0)
    aggregation: Aggregation
    per_grader: list[GraderScore] = Field(default_factory=list)

    def score_for(self, grader_name: str) -> float | None:
        for detail in self.per_grader:
            if detail.grader_name == grader_name:
                return detail.score
        return None
