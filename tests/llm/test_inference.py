# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Tests for the inference boundary: JSON recovery, contracts and providers."""
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agent_loop.config import InferenceSettings
from agent_loop.llm.base import Message, extract_json, strip_code_fences, with_json_instruction
from agent_loop.llm.factory import create_inference_service
from agent_loop.llm.providers import AnthropicInference, OllamaInference, OpenAIInference
from agent_loop.types.contracts import JudgeVerdict, contract_json_schema
from agent_loop.types.errors import ContractViolation, InferenceError


class TestExtractJson:
    def test_plain_json(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_code_fence(self):
        assert extract_json('```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_embedded_in_prose(self):
        text = 'Sure! Here is the result: {"score": 0.7, "feedback": "fine"} Hope that helps.'
        assert extract_json(text) == {"score": 0.7, "feedback": "fine"}

    def test_array(self):
        assert extract_json("Result:\n[1, 2, 3]") == [1, 2, 3]

    def test_repairs_trailing_comma(self):
        assert extract_json('{"a": 1, "b": 2,}') == {"a": 1, "b": 2}

    def test_no_json_raises(self):
        with pytest.raises(InferenceError):
            extract_json("no structured data here")

    def test_strip_code_fences(self):
        assert strip_code_fences("```\nhello\n```") == "hello"


class TestComplete:
    @pytest.mark.asyncio
    async def test_free_text(self, scripted):
        inference = scripted(["  some text  "])
        assert await inference.complete([Message(role="user", content="hi")]) == "  some text  "

    @pytest.mark.asyncio
    async def test_validates_contract(self, scripted):
        inference = scripted(['{"score": 0.25, "feedback": "weak"}'])
        verdict = await inference.complete([Message(role="user", content="grade")], schema="judge_verdict")
        assert verdict == JudgeVerdict(score=0.25, feedback="weak")
        assert inference.calls[0][1] == "JudgeVerdict"

    @pytest.mark.asyncio
    async def test_contract_violation(self, scripted):
        inference = scripted(['{"feedback": "no score"}'])
        with pytest.raises(ContractViolation) as excinfo:
            await inference.complete([Message(role="user", content="grade")], schema="judge_verdict")
        assert excinfo.value.contract == "judge_verdict"

    @pytest.mark.asyncio
    async def test_empty_response(self, scripted):
        with pytest.raises(InferenceError):
            await scripted(["   "]).complete([Message(role="user", content="hi")])

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self, scripted):
        with pytest.raises(InferenceError) as excinfo:
            await scripted([ConnectionError("refused")]).complete([Message(role="user", content="hi")])
        assert "scripted request failed: refused" in str(excinfo.value)
        assert isinstance(excinfo.value.__cause__, ConnectionError)

    def test_json_instruction_appended_to_last_message(self):
        messages = [Message(role="system", content="sys"), Message(role="user", content="question")]
        result = with_json_instruction(messages, contract_json_schema("judge_verdict"))
        assert result[0].content == "sys"
        assert result[1].content.startswith("question\n\nRespond with valid JSON only")
        assert messages[1].content == "question"
        assert with_json_instruction(messages, None) is messages


class TestProviders:
    @pytest.mark.asyncio
    async def test_anthropic_separates_system(self):
        client = MagicMock()
        client.messages.create = AsyncMock(
            return_value=SimpleNamespace(content=[SimpleNamespace(type="text", text="hello")])
        )
        inference = AnthropicInference(model="test-model", client=client)

        text = await inference.complete(
            [Message(role="system", content="be nice"), Message(role="user", content="hi")]
        )

        assert text == "hello"
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "be nice"
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
        assert kwargs["model"] == "test-model"

    @pytest.mark.asyncio
    async def test_openai_requests_json_mode(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content='{"score": 1, "feedback": ""}'))]
            )
        )
        inference = OpenAIInference(client=client)

        verdict = await inference.complete([Message(role="user", content="grade")], schema="judge_verdict")

        assert verdict.score == 1.0
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0.3

    @pytest.mark.asyncio
    async def test_ollama_posts_chat(self):
        response = MagicMock(status_code=200)
        response.json.return_value = {"message": {"content": "local answer"}}
        inference = OllamaInference(base_url="http://ollama:11434/", model="tiny")

        with patch("agent_loop.llm.providers.ollama.requests.post", return_value=response) as post:
            text = await inference.complete([Message(role="user", content="hi")])

        assert text == "local answer"
        url = post.call_args.args[0]
        assert url == "http://ollama:11434/api/chat"
        payload = post.call_args.kwargs["json"]
        assert payload["model"] == "tiny"
        assert payload["stream"] is False

    @pytest.mark.asyncio
    async def test_ollama_http_error(self):
        response = MagicMock(status_code=500, text="boom")
        inference = OllamaInference()
        with patch("agent_loop.llm.providers.ollama.requests.post", return_value=response):
            with pytest.raises(InferenceError):
                await inference.complete([Message(role="user", content="hi")])


class TestFactory:
    def test_ollama(self):
        service = create_inference_service(
            InferenceSettings(provider="ollama", base_url="http://box:11434", model="m")
        )
        assert isinstance(service, OllamaInference)
        assert service.base_url == "http://box:11434"
        assert service.model == "m"

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_inference_service(InferenceSettings(provider="carrier-pigeon"))

    def test_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("AGENT_LOOP_PROVIDER", "Ollama")
        monkeypatch.delenv("AGENT_LOOP_BASE_URL", raising=False)
        monkeypatch.setenv("OLLAMA_BASE_URL", "http://gpu:11434")
        monkeypatch.setenv("AGENT_LOOP_TEMPERATURE", "0.2")

        settings = InferenceSettings.from_env()

        assert settings.provider == "ollama"
        assert settings.base_url == "http://gpu:11434"
        assert settings.temperature == 0.2
        assert settings.api_key is None
