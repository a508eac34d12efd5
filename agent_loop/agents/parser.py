# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Reading free-text model responses in the Thought / Action / Final Answer
format.

The format is untyped by nature, so this module is the only place that looks
at raw response text. `parse_response` never raises: anything it cannot make
sense of becomes a plain thought.
"""

import re
import json
import logging

from pydantic import BaseModel, Field

from ..types.agent_types import ParsedResponse, ToolAction

logger = logging.getLogger(__name__)

_THOUGHT_RE = re.compile(r"Thought:\s*([\s\S]*?)(?=Action:|Final Answer:|$)", re.IGNORECASE)
_FINAL_RE = re.compile(r"Final Answer:\s*([\s\S]*)$", re.IGNORECASE)
_ACTION_RE = re.compile(r"Action:\s*([\w.-]+)", re.IGNORECASE)
_ACTION_INPUT_RE = re.compile(r"Action Input:\s*", re.IGNORECASE)


class CompletionPolicy(BaseModel):
    """Soft heuristics used to detect and force completion.

    These phrases are tuned against the phrasing of particular models, so
    they are configuration rather than constants.
    """

    completion_phrases: tuple[str, ...] = Field(
        default=(
            "i have enough information",
            "sufficient information",
            "final answer",
        )
    )
    near_timeout_directive: str = (
        "Time is running out. Please provide your Final Answer now."
    )

    def signals_completion(self, thought: str) -> bool:
        # Whole words only, so "insufficient information" does not count
        text = thought.lower()
        return any(
            re.search(rf"\b{re.escape(phrase.lower())}\b", text) for phrase in self.completion_phrases
        )


DEFAULT_POLICY = CompletionPolicy()


def _balanced_object(text: str) -> str | None:
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _parse_action(response: str) -> ToolAction | None:
    action_match = _ACTION_RE.search(response)
    if not action_match:
        return None
    tool_name = action_match.group(1)
    rest = response[action_match.end() :]

    input_match = _ACTION_INPUT_RE.search(rest)
    if not input_match:
        return ToolAction(tool_name=tool_name, params={})

    raw = _balanced_object(rest[input_match.end() :])
    if raw is None:
        logger.debug(f"No JSON object after Action Input for {tool_name}")
        return None
    try:
        params = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug(f"Unparsable Action Input for {tool_name}: {raw[:200]}")
        return None
    if not isinstance(params, dict):
        return None
    return ToolAction(tool_name=tool_name, params=params)


def parse_response(text: str, policy: CompletionPolicy = DEFAULT_POLICY) -> ParsedResponse:
    """Parse one model response into ``{thought, action?, is_final}``."""
    text = text or ""

    thought_match = _THOUGHT_RE.search(text)
    thought = thought_match.group(1).strip() if thought_match else text.strip()

    final_match = _FINAL_RE.search(text)
    if final_match:
        return ParsedResponse(thought=final_match.group(1).strip(), is_final=True)

    action = _parse_action(text)
    if action is not None:
        return ParsedResponse(thought=thought, action=action, is_final=False)

    return ParsedResponse(thought=thought, is_final=policy.signals_completion(thought))
