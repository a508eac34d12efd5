# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import os
import json

from abc import ABC, abstractmethod
from typing import Any, ClassVar
from pydantic import BaseModel, Field


class ToolResult(BaseModel):
    """Represents the result of a tool execution."""

    tool_name: str
    success: bool
    data: Any = None
    error: str | None = None
    execution_time_ms: float = 0.0
    invocation_id: str = Field(default_factory=lambda: os.urandom(4).hex())

    def to_observation(self) -> str:
        """Serialise the result as the observation text fed back to the model."""
        if not self.success:
            return f"Error: {self.error}"
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, indent=2, default=str)

    def __str__(self):
        tool_response_str = "<TOOL_RESPONSE>"
        tool_response_str += (
            f"\n<STATUS>{'SUCCESS' if self.success else 'FAILURE'}</STATUS>"
        )
        if self.data is not None:
            tool_response_str += f"\n<OUTPUT>{self.to_observation()}</OUTPUT>"
        if self.error is not None:
            tool_response_str += f"\n<ERRORS>{self.error}</ERRORS>"
        tool_response_str += f"\n<DURATION>{self.execution_time_ms:.1f}ms</DURATION>"
        tool_response_str += "\n</TOOL_RESPONSE>"
        return tool_response_str


class ToolInterface(BaseModel, ABC):
    """Abstract interface for all tools"""

    # Class variables
    TOOL_NAME: ClassVar[str]
    TOOL_DESCRIPTION: ClassVar[str]
    ESTIMATED_COST_MS: ClassVar[int] = 2000

    model_config = {"extra": "forbid"}

    @abstractmethod
    async def run(self) -> ToolResult:
        """Execute the tool's functionality"""
        pass

    @classmethod
    @abstractmethod
    def parameter_schema(cls) -> dict[str, Any]:
        """The JSON schema describing the tool's parameters."""
        pass

    @classmethod
    @abstractmethod
    def to_prompt_format(cls) -> str:
        """Describe the tool for inclusion in a system prompt."""
        pass


class ToolUsageStats(BaseModel):
    """Running usage statistics for one registered tool."""

    tool_name: str
    total_calls: int = 0
    success_rate: float = 1.0
    average_execution_time_ms: float = 500.0
    last_used: float | None = None
    feedback_score: float = 5.0
    contexts: list[str] = Field(default_factory=list)
