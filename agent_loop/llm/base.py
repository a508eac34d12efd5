# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The inference service seen by the engine: role-tagged messages in, text or a
contract-validated model out. Everything behind `_generate` is a black box
with latency and failure modes.
"""

import json
import logging

from abc import ABC, abstractmethod
from typing import Any, Literal
from pydantic import BaseModel
from json_repair import repair_json

from ..types.contracts import contract_json_schema, validate_contract
from ..types.errors import InferenceError

logger = logging.getLogger(__name__)


class Message(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


def strip_code_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def _outermost_json(text: str) -> str | None:
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return None
    start_idx = min(starts)
    open_char = text[start_idx]
    close_char = "}" if open_char == "{" else "]"
    depth = 0
    for i in range(start_idx, len(text)):
        if text[i] == open_char:
            depth += 1
        elif text[i] == close_char:
            depth -= 1
            if depth == 0:
                return text[start_idx : i + 1]
    return None


def extract_json(text: str) -> Any:
    """Parse JSON from a model response.

    Sometimes models wrap JSON in markdown code blocks or add explanatory
    text, and sometimes the JSON itself is slightly broken.

    Raises:
        InferenceError: if no JSON value can be recovered.
    """
    text = strip_code_fences(text)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    candidate = _outermost_json(text)
    if candidate is not None:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass

    repaired = repair_json(candidate or text, return_objects=True)
    if repaired in ("", None) or (not isinstance(repaired, (dict, list))):
        raise InferenceError(f"Failed to parse JSON from response: {text[:500]}...")
    return repaired


class InferenceService(ABC):
    """Base class for inference service clients."""

    name: str = "inference"

    @abstractmethod
    async def _generate(
        self, messages: list[Message], json_schema: dict[str, Any] | None = None
    ) -> str:
        """Return the raw text of one completion."""
        pass

    async def complete(
        self, messages: list[Message], schema: str | None = None
    ) -> str | BaseModel:
        """Generate a completion.

        Args:
            messages: The conversation so far.
            schema: Name of an output contract. When given, the response is
                parsed as JSON and validated against the contract.

        Returns:
            The response text, or the validated contract model.

        Raises:
            InferenceError: on transport failure or an unusable response.
        """
        json_schema = contract_json_schema(schema) if schema else None
        try:
            text = await self._generate(messages, json_schema)
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(f"{self.name} request failed: {e}") from e

        if not isinstance(text, str) or not text.strip():
            raise InferenceError(f"{self.name} returned an empty response")
        if schema is None:
            return text
        return validate_contract(schema, extract_json(text))


def with_json_instruction(
    messages: list[Message], json_schema: dict[str, Any] | None
) -> list[Message]:
    """Append the structured-output instruction for providers without native support."""
    if json_schema is None:
        return messages
    instruction = (
        "\n\nRespond with valid JSON only, conforming to this JSON schema:\n"
        + json.dumps(json_schema)
    )
    result = [m.model_copy() for m in messages]
    result[-1] = Message(role=result[-1].role, content=result[-1].content + instruction)
    return result
