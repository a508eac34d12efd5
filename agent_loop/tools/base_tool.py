# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import json
import time
import logging

from typing import Any, ClassVar, Iterable
from pydantic import TypeAdapter, ValidationError

from ..types.tool_types import ToolInterface, ToolResult, ToolUsageStats

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Smoothing factors for the running usage statistics
USAGE_ALPHA = 0.1
FEEDBACK_ALPHA = 0.2
MAX_CONTEXTS = 10


class BaseTool(ToolInterface):
    """Abstract base class for all tools.

    Subclasses declare their parameters as pydantic fields; the parameter
    schema shown to the model is the model's JSON schema. Tools see only their
    own parameters, never the caller's trace or budget.
    """

    TOOL_NAME: ClassVar[str]
    TOOL_DESCRIPTION: ClassVar[str]
    ESTIMATED_COST_MS: ClassVar[int] = 2000

    # run is still abstract...

    @classmethod
    def parameter_schema(cls) -> dict[str, Any]:
        schema = cls.model_json_schema()
        return {
            "type": "object",
            "properties": schema.get("properties", {}),
            "required": schema.get("required", []),
        }

    @classmethod
    def to_prompt_format(cls) -> str:
        schema = cls.parameter_schema()
        required = set(schema["required"])
        params = []
        for name, prop in schema["properties"].items():
            flag = "" if name in required else " (optional)"
            params.append(f"    - {name}{flag}: {prop.get('description', prop.get('type', ''))}")
        params_str = "\n".join(params) if params else "    (no parameters)"
        return f"- {cls.TOOL_NAME}: {cls.TOOL_DESCRIPTION}\n  Parameters:\n{params_str}"

    def result(self, data: Any = None) -> ToolResult:
        return ToolResult(tool_name=self.TOOL_NAME, success=True, data=data)

    def failure(self, error: str) -> ToolResult:
        return ToolResult(tool_name=self.TOOL_NAME, success=False, error=error)


class ToolRegistry:
    """Named tools invocable by the reasoning loop.

    Registration happens once at start-up; afterwards the registry is only
    read, apart from its usage statistics, so one registry can be shared by
    concurrent executions.
    """

    def __init__(self, tools: Iterable[type[BaseTool]] = ()):
        self._tools: dict[str, type[BaseTool]] = {}
        self._stats: dict[str, ToolUsageStats] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: type[BaseTool]) -> None:
        """Add a tool by name. Registering an existing name replaces it."""
        if tool.TOOL_NAME in self._tools:
            logger.info(f"Replacing registered tool {tool.TOOL_NAME}")
        self._tools[tool.TOOL_NAME] = tool
        if tool.TOOL_NAME not in self._stats:
            self._stats[tool.TOOL_NAME] = ToolUsageStats(
                tool_name=tool.TOOL_NAME,
                average_execution_time_ms=float(tool.ESTIMATED_COST_MS),
            )

    def get(self, name: str) -> type[BaseTool] | None:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def tools(self) -> list[type[BaseTool]]:
        return list(self._tools.values())

    def estimated_cost_ms(self, name: str, default: int = 2000) -> int:
        tool = self._tools.get(name)
        return tool.ESTIMATED_COST_MS if tool is not None else default

    def describe(self) -> str:
        """The tool catalog as shown in the system framing."""
        if not self._tools:
            return "No tools available."
        return "Available tools:\n" + "\n\n".join(
            tool.to_prompt_format() for tool in self._tools.values()
        )

    async def execute(
        self, name: str, params: dict[str, Any], context: str | None = None
    ) -> ToolResult:
        """Run a tool by name.

        Never raises: an unknown tool, invalid parameters or an exception in
        the tool all come back as a failed `ToolResult`. Execution time is
        recorded on every path.
        """
        start_time = time.perf_counter()
        tool_cls = self._tools.get(name)

        if tool_cls is None:
            result = ToolResult(
                tool_name=name, success=False, error=f'Tool "{name}" not found'
            )
        else:
            try:
                validated_tool = TypeAdapter(tool_cls).validate_python(params or {})
                result = await validated_tool.run()
            except ValidationError as e:
                result = ToolResult(
                    tool_name=name,
                    success=False,
                    error=f"Invalid parameters: {json.dumps(e.errors(include_url=False), default=str)}",
                )
            except Exception as e:
                logger.error(f"Error during tool execution: {str(e)}")
                result = ToolResult(tool_name=name, success=False, error=str(e) or type(e).__name__)

        result.execution_time_ms = (time.perf_counter() - start_time) * 1000.0
        if tool_cls is not None:
            self.record_usage(name, result, context)
        return result

    # ==================== Usage statistics ====================

    def stats(self, name: str) -> ToolUsageStats | None:
        return self._stats.get(name)

    def record_usage(self, name: str, result: ToolResult, context: str | None = None) -> None:
        stats = self._stats.get(name)
        if stats is None:
            return
        stats.total_calls += 1
        stats.last_used = time.time()
        stats.success_rate = (
            USAGE_ALPHA * (1.0 if result.success else 0.0)
            + (1 - USAGE_ALPHA) * stats.success_rate
        )
        stats.average_execution_time_ms = (
            USAGE_ALPHA * result.execution_time_ms
            + (1 - USAGE_ALPHA) * stats.average_execution_time_ms
        )
        if context and context not in stats.contexts:
            stats.contexts.append(context)
            if len(stats.contexts) > MAX_CONTEXTS:
                stats.contexts.pop(0)

    def update_feedback(self, name: str, score: float) -> None:
        stats = self._stats.get(name)
        if stats is None:
            return
        stats.feedback_score = FEEDBACK_ALPHA * score + (1 - FEEDBACK_ALPHA) * stats.feedback_score

    def recommended_tools(
        self, module_name: str, task: str, max_tools: int = 5
    ) -> list[type[BaseTool]]:
        """Rank tools by track record and relevance to a module and task.

        Library API for callers that assemble their own toolkits; the built-in
        agents use the fixed per-module toolkits. Feedback scores come from
        `update_feedback`, which the ReAct engine calls with each graded
        output.
        """
        task_key = task.lower()[:20]
        scored = []
        for tool in self._tools.values():
            stats = self._stats[tool.TOOL_NAME]
            score = stats.success_rate * 30 + stats.feedback_score * 10
            if module_name in stats.contexts:
                score += 20
            if task_key and task_key in tool.TOOL_DESCRIPTION.lower():
                score += 15
            if stats.average_execution_time_ms < 500:
                score += 5
            scored.append((score, tool))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [tool for _, tool in scored[:max_tools]]

    def subset(self, names: Iterable[str]) -> "ToolRegistry":
        """A new registry holding only the named tools."""
        return ToolRegistry(self._tools[n] for n in names if n in self._tools)
