# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Client for OpenAI-compatible chat completion endpoints."""

import logging

from typing import Any
from openai import AsyncOpenAI

from ..base import InferenceService, Message, with_json_instruction

logger = logging.getLogger(__name__)


class OpenAIInference(InferenceService):
    name = "openai"

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def _generate(
        self, messages: list[Message], json_schema: dict[str, Any] | None = None
    ) -> str:
        messages = with_json_instruction(messages, json_schema)
        args: dict[str, Any] = dict(
            model=self.model,
            messages=[{"role": m.role, "content": m.content} for m in messages],
            max_tokens=self.max_tokens,
            temperature=0.3 if json_schema else self.temperature,
        )
        if json_schema is not None:
            args["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(**args)
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
