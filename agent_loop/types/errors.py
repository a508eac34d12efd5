# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Exceptions raised by the agent loop engine.

Only genuinely exceptional conditions are raised. Degraded-but-valid outcomes
(an aborted execution, a failed tool, a fallback grade) are returned as values.
"""


class AgentLoopError(Exception):
    """Base class for all agent loop errors."""


class BudgetTimeoutError(AgentLoopError):
    """An operation raced against a time budget lost, and no fallback was given."""

    def __init__(self, module_name: str, max_duration_ms: int):
        self.module_name = module_name
        self.max_duration_ms = max_duration_ms
        super().__init__(f"[{module_name}] Timeout after {max_duration_ms}ms")


class InferenceError(AgentLoopError):
    """The inference service failed or returned an unusable response."""


class ContractViolation(InferenceError):
    """Structured output did not satisfy its named output contract."""

    def __init__(self, contract: str, detail: str):
        self.contract = contract
        self.detail = detail
        super().__init__(f"Output does not satisfy contract '{contract}': {detail}")


class PersistenceError(AgentLoopError):
    """A record could not be durably written or read."""
