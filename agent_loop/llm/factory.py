# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import logging

from .base import InferenceService
from .providers import AnthropicInference, OpenAIInference, OllamaInference
from ..config import InferenceSettings

logger = logging.getLogger(__name__)


def create_inference_service(settings: InferenceSettings) -> InferenceService:
    """Build the inference client named by ``settings.provider``."""
    provider = settings.provider.lower()
    common = dict(temperature=settings.temperature, max_tokens=settings.max_tokens)

    if provider == "anthropic":
        logger.info("Using Anthropic API")
        kwargs = dict(api_key=settings.api_key, **common)
        if settings.model:
            kwargs["model"] = settings.model
        return AnthropicInference(**kwargs)

    if provider == "openai":
        logger.info(f"Using OpenAI-compatible API at {settings.base_url or 'default endpoint'}")
        kwargs = dict(api_key=settings.api_key, base_url=settings.base_url, **common)
        if settings.model:
            kwargs["model"] = settings.model
        return OpenAIInference(**kwargs)

    if provider == "ollama":
        logger.info(f"Using local LLM (Ollama) at {settings.base_url}")
        kwargs = dict(**common)
        if settings.base_url:
            kwargs["base_url"] = settings.base_url
        if settings.model:
            kwargs["model"] = settings.model
        return OllamaInference(**kwargs)

    raise ValueError(f"Unknown inference provider: {settings.provider}")
