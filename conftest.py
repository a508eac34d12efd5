# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import json
import asyncio

import pytest

from agent_loop.llm.base import InferenceService
from agent_loop.storage import ConfigStore, LoopRepository
from agent_loop.types.errors import InferenceError
from agent_loop.types.loop_types import Persona

# Enable asyncio support for pytest
pytest_plugins = ["pytest_asyncio"]

# Optional: Define custom command-line options for your markers
def pytest_addoption(parser):
    parser.addoption(
        "--run-llm",
        action="store_true",
        default=False,
        help="Run tests marked with 'uses_llm'",
    )
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run tests marked with 'slow'",
    )

# Skip tests based on markers unless the corresponding option is provided
def pytest_collection_modifyitems(config, items):
    if not config.getoption("--run-llm"):
        skip_llm = pytest.mark.skip(reason="need --run-llm option to run")
        for item in items:
            if "uses_llm" in item.keywords:
                item.add_marker(skip_llm)
    if not config.getoption("--run-slow"):
        skip_slow = pytest.mark.skip(reason="need --run-slow option to run")
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


class ScriptedInference(InferenceService):
    """Inference double driven by a handler or a queue of canned responses.

    The handler receives ``(messages, contract)`` where ``contract`` is the
    title of the requested output schema (e.g. ``"JudgeVerdict"``) or None for
    free text. Responses may be strings, JSON-able values, exceptions to raise
    or coroutines to await.
    """

    name = "scripted"

    def __init__(self, responses=None, handler=None):
        self.responses = list(responses or [])
        self.handler = handler
        self.calls = []

    async def _generate(self, messages, json_schema=None):
        contract = json_schema.get("title") if json_schema else None
        self.calls.append((list(messages), contract))
        if self.handler is not None:
            result = self.handler(messages, contract)
        elif self.responses:
            result = self.responses.pop(0)
        else:
            raise InferenceError("no scripted response left")

        if asyncio.iscoroutine(result):
            result = await result
        if isinstance(result, Exception):
            raise result
        if isinstance(result, (dict, list)):
            return json.dumps(result)
        return result


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


PERSONA_DATA = {
    "name": "Alex Kim",
    "background": {
        "years_of_experience": 3,
        "current_role": "Software Engineer",
        "current_company": "Acme",
        "education": "BS Computer Science",
        "skills": ["Python", "SQL", "Docker"],
    },
    "target_job": {"company": "Globex", "position": "Backend Engineer"},
    "personality": {
        "communication_style": "concise",
        "confidence_level": "medium",
        "criticality": 6,
        "patience": 5,
        "trust": 5,
    },
    "interview_behavior": {
        "typical_response_length": "medium",
        "uses_examples": True,
        "asks_for_clarification": False,
        "gets_nervous": False,
    },
    "resume_text": "Three years building payment APIs in Python.",
    "situation": "Applying to twenty backend roles this month.",
    "feedback_style": "direct",
}

QUESTION_JSON = {
    "question": "Can you walk me through a backend project you are proud of?",
    "question_type": "follow_up",
    "reasoning": "Grounds the interview in the candidate's own experience.",
}

HINT_JSON = {"hint": "Try structuring it with the STAR method.", "framework": "STAR"}


def persona_data(**overrides) -> dict:
    data = json.loads(json.dumps(PERSONA_DATA))
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key].update(value)
        else:
            data[key] = value
    return data


def feedback_json(satisfaction: float = 8, would_recommend: bool = True) -> dict:
    return {
        "overall_satisfaction": satisfaction,
        "would_recommend": would_recommend,
        "module_feedback": [
            {
                "module": "question_generation",
                "rating": satisfaction,
                "strengths": ["Relevant"],
                "weaknesses": ["Generic"],
                "specific_issues": ["Questions too generic"],
                "suggestions": ["Ask deeper follow-ups"],
            }
        ],
        "emotional_journey": "Nervous at first, then comfortable.",
        "prioritized_suggestions": [
            {
                "priority": "high",
                "suggestion": "Ask deeper follow-ups",
                "affected_module": "question_generation",
                "expected_impact": "More realistic practice",
            }
        ],
        "raw_feedback": "A solid session overall.",
    }


def loop_handler(
    satisfaction: float = 8,
    would_recommend: bool = True,
    convergence: float = 0.9,
    personas_per_batch: int = 1,
    updates: list | None = None,
):
    """A handler that plays every role in a full loop iteration."""
    if updates is None:
        updates = [
            {
                "module": "question_generation",
                "new_payload": "Ask sharper, role-specific questions.",
                "changelog": "Sharper questions",
                "expected_impact": "Higher relevance",
            }
        ]
    counter = {"personas": 0}

    def handler(messages, contract):
        if contract == "PersonaBatch":
            batch = []
            for _ in range(personas_per_batch):
                counter["personas"] += 1
                batch.append(persona_data(name=f"Persona {counter['personas']}"))
            return {"personas": batch}
        if contract == "FeedbackPayload":
            return feedback_json(satisfaction, would_recommend)
        if contract == "OptimizationPayload":
            return {
                "updates": updates,
                "persona_generator_update": "Add more demanding candidates.",
                "summary": "Tightened question generation",
                "convergence_score": convergence,
            }
        if contract == "JudgeVerdict":
            return {"score": 0.9, "feedback": "Good"}

        first = messages[0].content
        if first.startswith("You are an expert interviewer"):
            return f"Thought: I have enough information.\nFinal Answer: {json.dumps(QUESTION_JSON)}"
        if first.startswith("You help a candidate"):
            return f"Final Answer: {json.dumps(HINT_JSON)}"
        if first.startswith("You are simulating a job candidate"):
            return "I led the migration of our billing service to Python 3 and cut latency in half."
        return "Make the next personas more detail-oriented."

    return handler


@pytest.fixture
def scripted():
    """Factory for scripted inference services."""
    return ScriptedInference


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_persona():
    def _make(**overrides) -> Persona:
        iteration = overrides.pop("iteration", 1)
        return Persona(**persona_data(**overrides), iteration=iteration)

    return _make


@pytest.fixture
def repo(tmp_path):
    """A LoopRepository backed by a fresh temporary database."""
    return LoopRepository(tmp_path / "agent_loop.db")


@pytest.fixture
def store(repo):
    return ConfigStore(repo)


@pytest.fixture
def handler_factory():
    return loop_handler


@pytest.fixture
def feedback_factory():
    return feedback_json


@pytest.fixture
def persona_dict():
    """Raw persona data as the generator would return it."""
    return persona_data
