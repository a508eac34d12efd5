# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Adaptive agent-loop optimization engine.

A time-bounded ReAct executor, a multi-grader evaluator and an iteration
orchestrator that drives synthetic-user simulation and configuration
self-optimization toward convergence.
"""

__version__ = "0.1.0"
