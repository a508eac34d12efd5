# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The ReAct (Reasoning + Acting) executor.

Each execution runs a bounded Thinking -> (ToolCall -> Observing -> Thinking)
cycle against the inference service and the tool registry, and ends either
`Completed` with a final answer or `Aborted` with a reason. Both carry the
trace accumulated so far; nothing in the cycle raises to the caller.
"""

import logging

from abc import ABC, abstractmethod
from typing import Any, Callable, ClassVar, Generic, TypeVar

from .parser import CompletionPolicy, DEFAULT_POLICY, parse_response
from ..budget.manager import TimeBudgetManager, _monotonic_ms
from ..events import EventBus
from ..grading.multi_grader import MultiGrader
from ..llm.base import InferenceService, Message
from ..tools.base_tool import ToolRegistry
from ..types.agent_types import (
    Aborted,
    AgentResult,
    Completed,
    ExecutionTrace,
    Step,
)
from ..types.budget_types import TimeBudget, resolve_budget
from ..types.event_types import EventType

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

TInput = TypeVar("TInput")
TOutput = TypeVar("TOutput")

# Abort reasons
INSUFFICIENT_TIME_FOR_TOOL = "insufficient time for tool"
INFERENCE_TIMEOUT = "inference timeout"
TIME_BUDGET_EXPIRED = "time budget expired"
STEP_LIMIT_REACHED = "step limit reached"

REACT_FORMAT = """You are a ReAct agent. Follow this format:

Thought: [Your reasoning about what to do next]
Action: [Tool name to use]
Action Input: [JSON parameters for the tool]

After receiving the observation, continue with:
Thought: [Your reasoning based on the observation]
...

When you have enough information, respond with:
Final Answer: [Your final response in the required format]"""


class BaseReActAgent(ABC, Generic[TInput, TOutput]):
    """Base class for agents driven by the ReAct cycle.

    Subclasses provide the system framing and the parsing of the final answer
    into a typed output. One agent instance may serve concurrent executions:
    all per-execution state (budget, transcript, trace) lives in `execute`.
    """

    AGENT_NAME: ClassVar[str]
    MODULE_NAME: ClassVar[str]
    AVG_STEP_COST_MS: ClassVar[int] = 2000
    # Grading only runs when a minimum quality score is set
    MIN_QUALITY_SCORE: ClassVar[float | None] = None

    def __init__(
        self,
        inference: InferenceService,
        tools: ToolRegistry | None = None,
        budget: TimeBudget | None = None,
        grader: MultiGrader | None = None,
        policy: CompletionPolicy = DEFAULT_POLICY,
        events: EventBus | None = None,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        self.inference = inference
        self.tools = tools if tools is not None else ToolRegistry()
        self.budget = budget or resolve_budget(self.MODULE_NAME)
        self.grader = grader
        self.policy = policy
        self.events = events
        self._clock = clock

    @abstractmethod
    def build_system_prompt(self, input: TInput, context: dict[str, Any]) -> str:
        pass

    @abstractmethod
    def parse_output(self, final_answer: str, trace: ExecutionTrace) -> TOutput | None:
        """Turn the final answer text into the typed output, or None if unusable."""
        pass

    async def get_initial_context(self, input: TInput) -> dict[str, Any]:
        return {}

    def grading_context(self, input: TInput, context: dict[str, Any]) -> Any:
        return context

    def rate_tools(self, trace: ExecutionTrace, score: float) -> None:
        """Credit each tool used in the trace with the output's grade (0..1 scaled to 0..10)."""
        used = {step.action.tool_name for step in trace.steps if step.action is not None}
        for name in sorted(used):
            self.tools.update_feedback(name, score * 10)

    def build_messages(self, input: TInput, context: dict[str, Any], remaining_ms: float) -> list[Message]:
        system = (
            f"{self.build_system_prompt(input, context)}\n\n"
            f"{self.tools.describe()}\n\n"
            f"{REACT_FORMAT}\n\n"
            f"Time Budget: You have {remaining_ms:.0f}ms remaining. Be efficient."
        )
        return [
            Message(role="system", content=system),
            Message(role="user", content="Begin your analysis."),
        ]

    async def _emit(self, event_type: EventType, content: str, **metadata) -> None:
        if self.events is not None:
            await self.events.emit(event_type, content, agent=self.AGENT_NAME, **metadata)

    async def execute(self, input: TInput) -> AgentResult[TOutput]:
        """Run one bounded reasoning-action cycle."""
        budget = TimeBudgetManager(self.MODULE_NAME, self.budget, clock=self._clock)
        trace = ExecutionTrace()

        context = await self.get_initial_context(input)
        messages = self.build_messages(input, context, budget.remaining())
        max_steps = budget.recommended_max_steps(self.AVG_STEP_COST_MS)

        final_answer: str | None = None
        abort_reason: str | None = None

        while len(trace) < max_steps and not budget.is_expired():
            index = trace.next_index()
            step_start = budget.elapsed()
            budget.checkpoint(f"step_{index}_start")
            logger.debug(f"[{self.AGENT_NAME}] Awaiting completion for step {index}...")

            try:
                response = await budget.with_timeout(
                    self.inference.complete(messages), fallback=None
                )
            except Exception as e:
                logger.error(f"[{self.AGENT_NAME}] Step {index} error: {e}")
                abort_reason = f"inference failure: {e}"
                break

            if response is None:
                abort_reason = INFERENCE_TIMEOUT
                break
            if not isinstance(response, str):
                abort_reason = "invalid inference response"
                break

            parsed = parse_response(response, self.policy)
            step = Step(index=index, thought=parsed.thought)

            if parsed.is_final:
                step.elapsed_ms = budget.elapsed() - step_start
                trace.append(step)
                final_answer = parsed.thought
                break

            if parsed.action is not None:
                step.action = parsed.action
                cost = self.tools.estimated_cost_ms(parsed.action.tool_name)

                if not budget.has_time_for(cost):
                    step.elapsed_ms = budget.elapsed() - step_start
                    trace.append(step)
                    abort_reason = INSUFFICIENT_TIME_FOR_TOOL
                    break

                result = await budget.with_timeout(
                    self.tools.execute(
                        parsed.action.tool_name,
                        parsed.action.params,
                        context=self.MODULE_NAME,
                    ),
                    fallback=None,
                )
                step.observation = (
                    result.to_observation()
                    if result is not None
                    else f"Error: tool {parsed.action.tool_name} timed out"
                )
                messages.append(Message(role="assistant", content=response))
                messages.append(
                    Message(
                        role="user",
                        content=f"Observation: {step.observation}\n\n"
                        f"Remaining time: {budget.remaining():.0f}ms. Continue your analysis.",
                    )
                )
            else:
                messages.append(Message(role="assistant", content=response))
                messages.append(
                    Message(
                        role="user",
                        content=f"Continue your analysis. Remaining time: {budget.remaining():.0f}ms.",
                    )
                )

            step.elapsed_ms = budget.elapsed() - step_start
            trace.append(step)
            await self._emit(
                EventType.AGENT_STEP,
                step.thought,
                step=index,
                tool=step.action.tool_name if step.action else None,
            )

            if budget.is_near_timeout():
                messages.append(Message(role="user", content=self.policy.near_timeout_directive))

        if final_answer is None and abort_reason is None:
            abort_reason = TIME_BUDGET_EXPIRED if budget.is_expired() else STEP_LIMIT_REACHED

        trace.total_time_ms = budget.elapsed()

        if final_answer is None:
            logger.warning(
                f"[{self.AGENT_NAME}] Aborted after {len(trace)} steps: {abort_reason}"
            )
            await self._emit(EventType.AGENT_ABORTED, abort_reason, steps=len(trace))
            return AgentResult(
                agent_name=self.AGENT_NAME,
                outcome=Aborted(reason=abort_reason, partial_trace=trace),
                error=abort_reason,
            )

        try:
            output = self.parse_output(final_answer, trace)
        except Exception as e:
            logger.warning(f"[{self.AGENT_NAME}] Could not parse final answer: {e}")
            output = None

        grade = None
        if output is not None and self.grader is not None and self.MIN_QUALITY_SCORE is not None:
            grade = await budget.with_timeout(
                self.grader.evaluate(output, self.grading_context(input, context)),
                fallback=None,
            )
            if grade is None:
                logger.warning(f"[{self.AGENT_NAME}] Grading did not finish within the budget")
            else:
                if grade.overall_score < self.MIN_QUALITY_SCORE:
                    logger.info(
                        f"[{self.AGENT_NAME}] Output scored {grade.overall_score:.2f}, "
                        f"below {self.MIN_QUALITY_SCORE}"
                    )
                self.rate_tools(trace, grade.overall_score)

        return AgentResult(
            agent_name=self.AGENT_NAME,
            outcome=Completed(final_answer=final_answer, trace=trace),
            output=output,
            grade=grade,
            error=None if output is not None else "Failed to generate valid output",
        )
