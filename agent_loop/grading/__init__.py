# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from .graders import Grader, RuleGrader, JudgeGrader, SimilarityGrader
from .multi_grader import MultiGrader, aggregate_scores
from .similarity import jaccard_similarity, uniqueness_score
from .presets import create_multi_grader

__all__ = [
    "Grader",
    "RuleGrader",
    "JudgeGrader",
    "SimilarityGrader",
    "MultiGrader",
    "aggregate_scores",
    "jaccard_similarity",
    "uniqueness_score",
    "create_multi_grader",
]
