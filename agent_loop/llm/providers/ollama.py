# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Local LLM client using Ollama for free, private inference.
"""

import asyncio
import logging

from typing import Any

import requests

from ..base import InferenceService, Message, with_json_instruction
from ...types.errors import InferenceError

logger = logging.getLogger(__name__)


class OllamaInference(InferenceService):
    """
    Client for interacting with an Ollama local LLM server.

    The HTTP call is blocking, so it runs in a worker thread; the engine's
    budget race therefore still bounds how long a caller waits.
    """

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "gemma2:27b-instruct-q4_K_M",
        temperature: float = 0.7,
        max_tokens: int = 4096,
        request_timeout_s: float = 300,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.request_timeout_s = request_timeout_s

    def _post(self, payload: dict[str, Any]) -> str:
        response = requests.post(
            f"{self.base_url}/api/chat", json=payload, timeout=self.request_timeout_s
        )
        if response.status_code != 200:
            raise InferenceError(
                f"Ollama API error: {response.status_code} - {response.text}"
            )
        return response.json()["message"]["content"]

    async def _generate(
        self, messages: list[Message], json_schema: dict[str, Any] | None = None
    ) -> str:
        messages = with_json_instruction(messages, json_schema)
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": False,
            "options": {
                "temperature": 0.3 if json_schema else self.temperature,
                "num_predict": self.max_tokens,
            },
        }
        if json_schema is not None:
            payload["format"] = "json"
        return await asyncio.to_thread(self._post, payload)

    def is_available(self) -> bool:
        """Check that the server is reachable and the model has been pulled."""
        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=5)
        except requests.RequestException:
            return False
        if response.status_code != 200:
            return False
        models = [m["name"] for m in response.json().get("models", [])]
        model_base = self.model.split(":")[0]
        return any(
            self.model == available or model_base == available.split(":")[0]
            for available in models
        )
