# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Multi-dimensional evaluation.

Scores one artifact along independent axes and aggregates them:
1. rule checks (fast, deterministic)
2. inference-service judgement (slow, catches subtle problems)
3. similarity checks (prevents duplicates)
"""

import asyncio
import logging

from typing import Any, Sequence

from .graders import Grader
from ..types.grade_types import Aggregation, GradeResult, GraderScore

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def aggregate_scores(
    details: Sequence[GraderScore],
    aggregation: Aggregation,
    weights: dict[str, float] | None = None,
) -> float:
    """Combine individual grader scores into one overall score."""
    if not details:
        return 0.0

    scores = [d.score for d in details]

    if aggregation == Aggregation.MIN:
        return min(scores)

    if aggregation == Aggregation.WEIGHTED and weights:
        total_weight = 0.0
        weighted_sum = 0.0
        for detail in details:
            weight = weights.get(detail.grader_name, 1.0)
            weighted_sum += detail.score * weight
            total_weight += weight
        return weighted_sum / total_weight if total_weight > 0 else 0.0

    # average, and weighted without any weights
    return sum(scores) / len(scores)


class MultiGrader:
    """Runs an ordered set of graders and aggregates their scores.

    Args:
        graders: The graders to run. Every grader contributes to every result.
        aggregation: How individual scores are combined.
        weights: Per-grader weights for `Aggregation.WEIGHTED`; graders
            without an entry weigh 1.
    """

    def __init__(
        self,
        graders: Sequence[Grader],
        aggregation: Aggregation | str = Aggregation.AVERAGE,
        weights: dict[str, float] | None = None,
    ):
        self.graders = list(graders)
        self.aggregation = Aggregation(aggregation)
        self.weights = dict(weights) if weights else None

        names = [g.name for g in self.graders]
        if len(names) != len(set(names)):
            raise ValueError(f"Grader names must be unique, got {names}")

    async def evaluate(self, output: Any, context: Any = None) -> GradeResult:
        """Run every grader concurrently and aggregate.

        The per-grader list keeps the configured grader order regardless of
        completion order.
        """
        details = list(
            await asyncio.gather(*(g.grade(output, context) for g in self.graders))
        )
        overall = aggregate_scores(details, self.aggregation, self.weights)
        logger.debug(
            f"Graded artifact: overall={overall:.3f} "
            + ", ".join(f"{d.grader_name}={d.score:.2f}" for d in details)
        )
        return GradeResult(
            overall_score=max(0.0, min(1.0, overall)),
            aggregation=self.aggregation,
            per_grader=details,
        )
