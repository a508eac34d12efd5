# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from typing import Annotated, Any, Generic, Literal, TypeVar, Union
from pydantic import BaseModel, Field

from .grade_types import GradeResult

T = TypeVar("T")


class ToolAction(BaseModel):
    """A tool invocation proposed by the model."""

    tool_name: str
    params: dict[str, Any] = Field(default_factory=dict)


class ParsedResponse(BaseModel):
    """The structured reading of one model response."""

    thought: str
    action: ToolAction | None = None
    is_final: bool = False


class Step(BaseModel):
    """One think (and optionally act and observe) step of an execution."""

    index: int = Field(..., ge=1)
    thought: str
    action: ToolAction | None = None
    observation: str | None = None
    elapsed_ms: float = 0.0


class ExecutionTrace(BaseModel):
    """Append-only log of the steps taken by one execution."""

    steps: list[Step] = Field(default_factory=list)
    total_time_ms: float = 0.0

    def next_index(self) -> int:
        return len(self.steps) + 1

    def append(self, step: Step) -> None:
        if step.index != self.next_index():
            raise ValueError(
                f"Step index {step.index} out of order, expected {self.next_index()}"
            )
        self.steps.append(step)

    @property
    def last_thought(self) -> str:
        return self.steps[-1].thought if self.steps else ""

    def __len__(self) -> int:
        return len(self.steps)


class Completed(BaseModel):
    """The execution reached a final answer."""

    kind: Literal["completed"] = "completed"
    final_answer: str
    trace: ExecutionTrace


class Aborted(BaseModel):
    """The execution stopped without a final answer."""

    kind: Literal["aborted"] = "aborted"
    reason: str
    partial_trace: ExecutionTrace


Outcome = Annotated[Union[Completed, Aborted], Field(discriminator="kind")]


class AgentResult(BaseModel, Generic[T]):
    """What a caller receives from `execute`."""

    agent_name: str
    outcome: Outcome
    output: T | None = None
    grade: GradeResult | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return isinstance(self.outcome, Completed) and self.output is not None

    @property
    def trace(self) -> ExecutionTrace:
        if isinstance(self.outcome, Completed):
            return self.outcome.trace
        return self.outcome.partial_trace

    @property
    def abort_reason(self) -> str | None:
        if isinstance(self.outcome, Aborted):
            return self.outcome.reason
        return None
