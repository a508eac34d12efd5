# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Anthropic messages API client."""

import logging

from typing import Any
from anthropic import AsyncAnthropic

from ..base import InferenceService, Message, with_json_instruction

logger = logging.getLogger(__name__)


class AnthropicInference(InferenceService):
    name = "anthropic"

    def __init__(
        self,
        model: str = "claude-3-5-sonnet-20241022",
        api_key: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        client: AsyncAnthropic | None = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.client = client or AsyncAnthropic(api_key=api_key)

    async def _generate(
        self, messages: list[Message], json_schema: dict[str, Any] | None = None
    ) -> str:
        messages = with_json_instruction(messages, json_schema)
        # Anthropic puts system separately
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        chat = [
            {"role": m.role, "content": m.content}
            for m in messages
            if m.role != "system"
        ]
        args: dict[str, Any] = dict(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=0.3 if json_schema else self.temperature,
            messages=chat,
        )
        if system:
            args["system"] = system

        response = await self.client.messages.create(**args)
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
