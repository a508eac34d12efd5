# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Mock interview simulation.

The interviewer side is the ReAct question agent; the candidate side is the
inference service role-playing the persona. Every call is raced against the
simulation's time budget, and a failed interviewer turn ends the simulation
early with the transcript recorded so far.
"""

import random
import logging

from typing import Callable

from ..agents.implementations import HintAgent, HintRequest, InterviewTurn, QuestionGenerationAgent
from ..budget.manager import TimeBudgetManager, _monotonic_ms
from ..llm.base import InferenceService, Message
from ..types.budget_types import TimeBudget
from ..types.loop_types import Persona, SimulatedMessage, SimulationResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

FALLBACK_ANSWER = (
    "I have experience in that area. Could you be more specific about what you'd like to know?"
)
CLOSING_MESSAGE = (
    "Thank you so much for sharing your experiences today! I've really enjoyed learning about "
    "your background and the impressive work you've done. I'll now generate a detailed assessment "
    "report based on our conversation. Is there anything else you'd like to add before we wrap up?"
)
HINT_REQUEST_MARKER = "[Requested hint]"

LENGTH_GUIDE = {
    "brief": "1-2 sentences",
    "medium": "3-4 sentences",
    "detailed": "5-7 sentences with specific examples",
}


def hint_probability(persona: Persona) -> float:
    """Chance that the persona asks for a hint on a given question."""
    if persona.interview_behavior.gets_nervous:
        return 0.3
    if persona.personality.confidence_level == "low":
        return 0.2
    return 0.05


class InterviewSimulator:
    """Runs one persona through a complete mock interview."""

    def __init__(
        self,
        inference: InferenceService,
        question_agent: QuestionGenerationAgent,
        hint_agent: HintAgent,
        questions_per_simulation: int = 6,
        max_hints: int = 3,
        budget: TimeBudget | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        self.inference = inference
        self.question_agent = question_agent
        self.hint_agent = hint_agent
        self.questions_per_simulation = questions_per_simulation
        self.max_hints = max_hints
        self.budget = budget
        self.rng = rng or random.Random()
        self._clock = clock

    def candidate_prompt(self, persona: Persona, question: str) -> str:
        personality = persona.personality
        behavior = persona.interview_behavior
        background = persona.background
        clarify = behavior.asks_for_clarification and self.rng.random() > 0.7

        return f"""You are simulating a job candidate in a mock interview.

PERSONA:
- Name: {persona.name}
- Background: {background.years_of_experience:g} years as {background.current_role} at {background.current_company}
- Skills: {', '.join(background.skills)}
- Communication style: {personality.communication_style}
- Confidence: {personality.confidence_level}
- {'Gets nervous in interviews' if behavior.gets_nervous else 'Stays calm'}
- {'Likes to give specific examples' if behavior.uses_examples else 'Tends to speak generally'}

RESUME CONTEXT:
{persona.resume_text}

CURRENT SITUATION:
{persona.situation}

INTERVIEW QUESTION:
"{question}"

Generate a realistic response that:
1. Matches the persona's communication style ({personality.communication_style})
2. Is {LENGTH_GUIDE[behavior.typical_response_length]}
3. {'Includes a specific example from their experience' if behavior.uses_examples else 'Stays somewhat general'}
4. {'Shows some hesitation or uncertainty' if personality.confidence_level == 'low' else 'Is confident'}
5. {'Asks for clarification if the question is complex' if clarify else 'Answers directly'}

Respond ONLY with the candidate's answer, no quotes or prefixes."""

    async def candidate_answer(self, persona: Persona, question: str, budget: TimeBudgetManager) -> str:
        messages = [Message(role="user", content=self.candidate_prompt(persona, question))]
        try:
            answer = await budget.with_timeout(self.inference.complete(messages), fallback=None)
        except Exception as e:
            logger.error(f"Error generating candidate response: {e}")
            answer = None
        if isinstance(answer, str) and answer.strip():
            return answer.strip()
        logger.warning(f"Candidate {persona.name} fell back to the canned answer")
        return FALLBACK_ANSWER

    def wants_hint(self, persona: Persona, question_number: int, hints_used: int) -> bool:
        # Draw first so the random sequence does not depend on the hint cap
        roll = self.rng.random()
        return question_number > 1 and hints_used < self.max_hints and roll < hint_probability(persona)

    async def simulate(
        self,
        persona: Persona,
        iteration: int,
        payloads: dict[str, str] | None = None,
    ) -> SimulationResult:
        payloads = payloads or {}
        budget = TimeBudgetManager("interview_simulation", self.budget, clock=self._clock)
        total = self.questions_per_simulation
        job = persona.target_job

        transcript: list[SimulatedMessage] = [
            SimulatedMessage(
                role="system",
                content=f"Mock interview for {job.position} at {job.company}. "
                f"Resume: {persona.resume_text[:200]}... Situation: {persona.situation}",
            )
        ]
        abort_reasons: list[str] = []
        hints_used = 0
        asked = 0

        async def ask(question_number: int) -> bool:
            nonlocal asked
            result = await self.question_agent.execute(
                InterviewTurn(
                    persona=persona,
                    conversation=list(transcript),
                    question_number=question_number,
                    total_questions=total,
                    guidance=payloads.get("question_generation", ""),
                )
            )
            if not result.success:
                reason = result.abort_reason or result.error or "no question produced"
                logger.warning(f"Question {question_number} for {persona.name} failed: {reason}")
                abort_reasons.append(f"question {question_number}: {reason}")
                return False
            transcript.append(
                SimulatedMessage(
                    role="assistant",
                    content=result.output.question,
                    question_type="opening" if question_number == 1 else result.output.question_type,
                )
            )
            asked += 1
            return True

        completed = await ask(1)

        for q in range(1, total + 1):
            if not completed:
                break
            if budget.is_expired():
                abort_reasons.append("simulation time budget expired")
                completed = False
                break

            question = transcript[-1].content

            if self.wants_hint(persona, q, hints_used):
                hint = await self.hint_agent.execute(
                    HintRequest(
                        persona=persona,
                        question=question,
                        conversation=list(transcript),
                        guidance=payloads.get("hint_system", ""),
                    )
                )
                if hint.success:
                    hints_used += 1
                    transcript.append(
                        SimulatedMessage(
                            role="user",
                            content=HINT_REQUEST_MARKER,
                            hint_requested=True,
                            hint_content=hint.output.hint,
                        )
                    )
                else:
                    logger.warning(f"Hint for {persona.name} failed: {hint.abort_reason or hint.error}")

            transcript.append(
                SimulatedMessage(role="user", content=await self.candidate_answer(persona, question, budget))
            )

            if q < total:
                completed = await ask(q + 1)
            else:
                transcript.append(
                    SimulatedMessage(role="assistant", content=CLOSING_MESSAGE, question_type="closing")
                )

        return SimulationResult(
            persona_id=persona.id,
            persona_name=persona.name,
            target_job=job,
            iteration=iteration,
            transcript=transcript,
            total_questions=asked,
            hints_used=hints_used,
            completed_successfully=completed,
            abort_reasons=abort_reasons,
            duration_ms=budget.elapsed(),
        )
