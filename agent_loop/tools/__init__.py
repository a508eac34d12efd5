# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
A module of tools available to the reasoning loop
"""

from .base_tool import BaseTool, ToolRegistry
from .interview_tools import AnalyzeDifficulty, CheckUserBackground, CompareSimilarity

toolkits: dict[str, list[type[BaseTool]]] = dict(
    question_generation=[AnalyzeDifficulty, CheckUserBackground, CompareSimilarity],
    hint_system=[AnalyzeDifficulty],
)


def default_registry() -> ToolRegistry:
    """A registry holding every built-in tool."""
    registry = ToolRegistry()
    for tools in toolkits.values():
        for tool in tools:
            if tool.TOOL_NAME not in registry:
                registry.register(tool)
    return registry


__all__ = [
    "BaseTool",
    "ToolRegistry",
    "AnalyzeDifficulty",
    "CheckUserBackground",
    "CompareSimilarity",
    "toolkits",
    "default_registry",
]
