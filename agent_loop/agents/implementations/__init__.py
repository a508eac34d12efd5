# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from .interview_agents import (
    QuestionGenerationAgent,
    HintAgent,
    InterviewTurn,
    HintRequest,
)

__all__ = ["QuestionGenerationAgent", "HintAgent", "InterviewTurn", "HintRequest"]
