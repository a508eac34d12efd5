# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Interview agents driven by the ReAct cycle: the interviewer that asks the
next question, and the hint agent that nudges a stuck candidate.
"""

import logging

from typing import Any
from pydantic import BaseModel, Field

from ..base_agent import BaseReActAgent
from ...llm.base import extract_json
from ...types.agent_types import ExecutionTrace
from ...types.contracts import InterviewHint, InterviewQuestion, validate_contract
from ...types.errors import InferenceError
from ...types.loop_types import Persona, SimulatedMessage

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def format_conversation(messages: list[SimulatedMessage], limit: int = 8) -> str:
    lines = []
    for m in messages[-limit:]:
        if m.role == "system":
            continue
        speaker = "Candidate" if m.role == "user" else "Interviewer"
        lines.append(f"{speaker}: {m.content}")
    return "\n".join(lines) if lines else "(no conversation yet)"


class InterviewTurn(BaseModel):
    persona: Persona
    conversation: list[SimulatedMessage] = Field(default_factory=list)
    question_number: int = 1
    total_questions: int = 6
    guidance: str = ""


class HintRequest(BaseModel):
    persona: Persona
    question: str
    conversation: list[SimulatedMessage] = Field(default_factory=list)
    guidance: str = ""


class QuestionGenerationAgent(BaseReActAgent[InterviewTurn, InterviewQuestion]):
    AGENT_NAME = "question_generation_agent"
    MODULE_NAME = "question_generation"
    MIN_QUALITY_SCORE = 0.6

    async def get_initial_context(self, input: InterviewTurn) -> dict[str, Any]:
        persona = input.persona
        return {
            "company": persona.target_job.company,
            "position": persona.target_job.position,
            "years_of_experience": persona.background.years_of_experience,
            "current_role": persona.background.current_role,
            "skills": persona.background.skills,
            "previous_questions": [
                m.content for m in input.conversation if m.role == "assistant"
            ],
        }

    def build_system_prompt(self, input: InterviewTurn, context: dict[str, Any]) -> str:
        if input.question_number == 1:
            stage = "Open the interview warmly and ask the first question."
        elif input.question_number >= input.total_questions:
            stage = "This is the last question; make it a closing question."
        else:
            stage = "Ask the next question, following up on the candidate's last answer where useful."

        return f"""You are an expert interviewer running a mock interview for a {context['position']} position at {context['company']}.

Candidate: {context['years_of_experience']} years as {context['current_role']}; skills: {', '.join(context['skills']) or 'not listed'}.
Question {input.question_number} of {input.total_questions}. {stage}

Guidelines:
{input.guidance or 'Ask relevant, clear, professional questions.'}

Conversation so far:
{format_conversation(input.conversation)}

Your Final Answer must be JSON: {{"question": "...", "question_type": "opening|follow_up|new_topic|deep_dive|closing", "reasoning": "..."}}"""

    def parse_output(self, final_answer: str, trace: ExecutionTrace) -> InterviewQuestion | None:
        try:
            return validate_contract("interview_question", extract_json(final_answer))
        except InferenceError:
            pass
        # Plain-text answers are accepted when they read as a question
        text = final_answer.strip()
        if "?" in text:
            return InterviewQuestion(question=text, question_type="follow_up")
        return None


class HintAgent(BaseReActAgent[HintRequest, InterviewHint]):
    AGENT_NAME = "hint_agent"
    MODULE_NAME = "hint_system"
    MIN_QUALITY_SCORE = 0.6

    async def get_initial_context(self, input: HintRequest) -> dict[str, Any]:
        return {
            "question": input.question,
            "position": input.persona.target_job.position,
            "years_of_experience": input.persona.background.years_of_experience,
        }

    def build_system_prompt(self, input: HintRequest, context: dict[str, Any]) -> str:
        return f"""You help a candidate who asked for a hint during a mock interview for a {context['position']} position.

Interview question:
{input.question}

Guidelines:
{input.guidance or 'Guide their thinking without giving away the answer.'}

Recent conversation:
{format_conversation(input.conversation, limit=4)}

Your Final Answer must be JSON: {{"hint": "...", "framework": "e.g. STAR, or empty"}}"""

    def parse_output(self, final_answer: str, trace: ExecutionTrace) -> InterviewHint | None:
        try:
            return validate_contract("interview_hint", extract_json(final_answer))
        except InferenceError:
            pass
        text = final_answer.strip()
        return InterviewHint(hint=text) if len(text) > 10 else None
