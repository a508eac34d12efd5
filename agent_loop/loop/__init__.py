# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""The persona / simulation / feedback / optimization loop."""

from .personas import PersonaConstraints, PersonaGenerator, repair_persona, validate_persona
from .simulator import InterviewSimulator
from .feedback import FeedbackGenerator, aggregate_feedback
from .optimizer import PromptOptimizer, has_converged
from .orchestrator import AgentLoop, LoopRunner, run_agent_loop
from .progressive import ProgressiveAgentLoop, check_convergence, check_quality_gates

__all__ = [
    "PersonaConstraints",
    "PersonaGenerator",
    "repair_persona",
    "validate_persona",
    "InterviewSimulator",
    "FeedbackGenerator",
    "aggregate_feedback",
    "PromptOptimizer",
    "has_converged",
    "AgentLoop",
    "LoopRunner",
    "run_agent_loop",
    "ProgressiveAgentLoop",
    "check_convergence",
    "check_quality_gates",
]
