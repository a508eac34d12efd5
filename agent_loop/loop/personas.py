# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Synthetic persona generation for the agent loop.

Personas are drafted by the inference service, stamped with an id and the
iteration, then checked against the target-user constraints. A persona that
violates them is repaired once; if the repaired persona still fails it is
dropped and logged as a loop-level anomaly.
"""

import re
import copy
import random
import logging

from dataclasses import dataclass, field
from typing import Any, Callable, get_args
from pydantic import BaseModel, ValidationError

from ..budget.manager import TimeBudgetManager, _monotonic_ms
from ..llm.base import InferenceService, Message
from ..types.budget_types import TimeBudget, resolve_budget
from ..types.contracts import PersonaBatch
from ..types.loop_types import InterviewBehavior, Persona, PersonaDraft, Personality, TargetJob

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

EVOLUTION_FALLBACK = "Continue with current strategy, increase criticality by 1."

# Substitutions applied to role titles during repair, in order
POSITION_REPLACEMENTS: dict[str, str] = {
    "vp of": "Senior",
    "vice president": "Senior Manager",
    "director of": "Lead",
    "senior director": "Senior Lead",
    "head of": "Lead",
    "chief": "Senior",
    "executive": "Senior",
    "principal": "Staff",
    "distinguished": "Senior Staff",
}


@dataclass(frozen=True)
class PersonaConstraints:
    """Who the synthetic users may be: early-career job seekers."""

    min_years_of_experience: float = 0
    max_years_of_experience: float = 8
    excluded_positions: tuple[str, ...] = (
        "VP", "Vice President",
        "Director", "Senior Director",
        "C-Level", "CEO", "CTO", "CFO", "COO", "CMO", "CIO", "CISO",
        "Chief", "President", "Partner",
        "Executive", "Head of",
        "Principal", "Distinguished",
    )
    replacements: dict[str, str] = field(default_factory=lambda: dict(POSITION_REPLACEMENTS))


DEFAULT_CONSTRAINTS = PersonaConstraints()


def _clamp(value: float, low: float = 1, high: float = 10) -> float:
    return max(low, min(high, value))


def validate_persona(persona: PersonaDraft, constraints: PersonaConstraints = DEFAULT_CONSTRAINTS) -> list[str]:
    """Return the reasons a persona violates the constraints (empty if it is valid)."""
    reasons = []
    years = persona.background.years_of_experience
    if years > constraints.max_years_of_experience:
        reasons.append(
            f"Experience {years:g} years exceeds max {constraints.max_years_of_experience:g}"
        )
    if years < constraints.min_years_of_experience:
        reasons.append(
            f"Experience {years:g} years below min {constraints.min_years_of_experience:g}"
        )

    current_role = persona.background.current_role.lower()
    target_position = persona.target_job.position.lower()
    for excluded in constraints.excluded_positions:
        excluded_lower = excluded.lower()
        if excluded_lower in current_role or excluded_lower in target_position:
            reasons.append(f"Position contains excluded term: {excluded}")
    return reasons


def replace_titles(title: str, replacements: dict[str, str]) -> str:
    for pattern, replacement in replacements.items():
        title = re.sub(re.escape(pattern), replacement, title, flags=re.IGNORECASE)
    return title


def normalize_personality(persona: Persona, rng: random.Random) -> Persona:
    """Clamp personality scores to 1..10 and derive trust when it is missing.

    Demanding personas start out more sceptical, so a missing trust level is
    derived as roughly 11 - criticality.
    """
    personality = persona.personality
    criticality = _clamp(personality.criticality)
    trust = personality.trust
    if trust is None:
        trust = 11 - criticality + rng.randint(-1, 1)
    updated = personality.model_copy(
        update={
            "criticality": criticality,
            "patience": _clamp(personality.patience),
            "trust": _clamp(trust),
        }
    )
    return persona.model_copy(update={"personality": updated})


def repair_persona(
    persona: Persona,
    constraints: PersonaConstraints = DEFAULT_CONSTRAINTS,
    rng: random.Random | None = None,
) -> Persona | None:
    """Try to bring a persona within the constraints.

    Returns:
        The repaired persona, or None if it still violates the constraints
    """
    rng = rng or random.Random()
    background = persona.background
    years = min(
        max(background.years_of_experience, constraints.min_years_of_experience),
        constraints.max_years_of_experience,
    )
    fixed = persona.model_copy(
        update={
            "background": background.model_copy(
                update={
                    "years_of_experience": years,
                    "current_role": replace_titles(background.current_role, constraints.replacements),
                }
            ),
            "target_job": persona.target_job.model_copy(
                update={
                    "position": replace_titles(persona.target_job.position, constraints.replacements)
                }
            ),
        }
    )
    fixed = normalize_personality(fixed, rng)

    if validate_persona(fixed, constraints):
        return None
    return fixed


def _allowed_values(model: type[BaseModel], field_name: str) -> tuple:
    return get_args(model.model_fields[field_name].annotation)


def _as_number(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def coerce_draft(raw: dict[str, Any], constraints: PersonaConstraints = DEFAULT_CONSTRAINTS) -> dict[str, Any]:
    """Best-effort cleanup of a raw persona draft that failed to parse.

    Unknown choice values fall back to the field default, personality scores
    are clamped to 1..10 and experience is clamped to the allowed range.
    Missing required sections are left missing.
    """
    data = copy.deepcopy(raw)

    personality = data.get("personality")
    if isinstance(personality, dict):
        for name in ("communication_style", "confidence_level"):
            if personality.get(name) not in _allowed_values(Personality, name):
                personality.pop(name, None)
        for name in ("criticality", "patience", "trust"):
            if name in personality:
                number = _as_number(personality[name])
                if number is None:
                    personality.pop(name)
                else:
                    personality[name] = _clamp(number)
    elif personality is not None:
        data.pop("personality")

    behavior = data.get("interview_behavior")
    if isinstance(behavior, dict):
        if behavior.get("typical_response_length") not in _allowed_values(InterviewBehavior, "typical_response_length"):
            behavior.pop("typical_response_length", None)
    elif behavior is not None:
        data.pop("interview_behavior")

    background = data.get("background")
    if isinstance(background, dict) and "years_of_experience" in background:
        years = _as_number(background["years_of_experience"])
        if years is not None:
            background["years_of_experience"] = _clamp(
                years, constraints.min_years_of_experience, constraints.max_years_of_experience
            )
    return data


TARGET_USER_PROFILE = """=== TARGET USER PROFILE (MUST FOLLOW) ===
Our target users are job seekers under 30 who are actively mass applying to many companies:

1. AGE: 18-30 years old (typically 0-8 years of work experience)
2. GOAL: Looking for a good job, need interview practice
3. BEHAVIOR: Mass applying to multiple companies (10-50+ applications)
4. JOB LEVELS ALLOWED: Intern, Junior, Associate, Mid-level, Senior, Lead, Staff Engineer, Manager
5. JOB LEVELS EXCLUDED: VP, Director, C-Level, Executive, Head of, Principal, Distinguished, Partner

How to increase criticality WITHOUT changing seniority:
- Higher criticality = MORE DETAILED profile, CLEARER expectations, DEEPER feedback
- Higher criticality = HIGHER standards for the tool, MORE DEMANDING about quality
- DO NOT increase criticality by making them more senior or experienced
- A junior developer can be criticality 10/10 if they are very detail-oriented and demanding"""


class PersonaGenerator:
    """Drafts, validates and repairs synthetic personas."""

    MODULE_NAME = "persona_generation"

    def __init__(
        self,
        inference: InferenceService,
        constraints: PersonaConstraints = DEFAULT_CONSTRAINTS,
        rng: random.Random | None = None,
        budget: TimeBudget | None = None,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        self.inference = inference
        self.constraints = constraints
        self.rng = rng or random.Random()
        self.budget = budget or resolve_budget(self.MODULE_NAME)
        self._clock = clock

    def _budget(self) -> TimeBudgetManager:
        return TimeBudgetManager(self.MODULE_NAME, self.budget, clock=self._clock)

    def parse_draft(self, raw: Any, iteration: int, target_job: TargetJob | None = None) -> Persona:
        """Turn one raw draft into a Persona, coercing bad values once.

        Raises:
            ValueError: if the draft cannot be parsed even after coercion.
        """
        if not isinstance(raw, dict):
            raise ValueError("draft is not an object")
        data = dict(raw)
        if target_job is not None:
            data["target_job"] = target_job.model_dump()
        try:
            draft = PersonaDraft.model_validate(data)
        except ValidationError:
            try:
                draft = PersonaDraft.model_validate(coerce_draft(data, self.constraints))
            except ValidationError as e:
                missing = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
                raise ValueError(f"unusable fields: {', '.join(missing)}") from e
        return Persona(**draft.model_dump(), iteration=iteration)

    def build_prompt(
        self,
        iteration: int,
        existing: list[Persona],
        target_criticality: float,
        count: int,
        target_job: TargetJob | None = None,
        guidance: str = "",
    ) -> str:
        if existing:
            existing_context = "Existing personas (DO NOT duplicate these characteristics):\n" + "\n".join(
                f"- {p.name}: {p.background.current_role} with {p.background.years_of_experience:g} years, "
                f"{p.personality.communication_style} style, criticality {p.criticality:g}/10"
                for p in existing[-5:]
            )
        else:
            existing_context = "No existing personas yet."

        job_constraint = ""
        if target_job is not None:
            job_constraint = (
                "\n=== REQUIRED TARGET JOB (MUST USE EXACTLY) ===\n"
                f"The persona MUST be applying for: {target_job.position} at {target_job.company}\n"
            )

        evolution = f"\n=== GENERATOR STRATEGY ===\n{guidance}\n" if guidance else ""

        return f"""Generate {count} unique mock user personas for testing an AI interview preparation system.

{TARGET_USER_PROFILE}
{job_constraint}{evolution}
{existing_context}

Requirements:
1. Each persona must be DISTINCTLY DIFFERENT from existing ones
2. Target criticality level: {target_criticality:g}/10 (higher = more demanding/critical in feedback, NOT more senior)
3. Iteration: {iteration} (personas should have increasingly detailed profiles and clearer expectations)
4. MUST have 0-{self.constraints.max_years_of_experience:g} years of experience
5. Each persona should have a realistic resume summary and current situation

Return a JSON object {{"personas": [...]}} where each persona has:
name, background {{years_of_experience, current_role, current_company, education, skills}},
target_job {{company, position}},
personality {{communication_style: verbose|concise|rambling|structured, confidence_level: high|medium|low,
criticality 1-10, patience 1-10, trust 1-10}},
interview_behavior {{typical_response_length: brief|medium|detailed, uses_examples, asks_for_clarification, gets_nervous}},
resume_text, situation, feedback_style"""

    async def generate(
        self,
        iteration: int,
        existing: list[Persona],
        target_criticality: float,
        count: int = 3,
        target_job: TargetJob | None = None,
        guidance: str = "",
    ) -> tuple[list[Persona], list[str]]:
        """Generate up to `count` valid personas.

        Returns:
            (accepted personas, rejection reasons for dropped candidates).
            Inference failure yields no personas rather than an error.
        """
        prompt = self.build_prompt(iteration, existing, target_criticality, count, target_job, guidance)
        try:
            batch = await self._budget().with_timeout(
                self.inference.complete([Message(role="user", content=prompt)], schema="persona_batch"),
                fallback=None,
            )
        except Exception as e:
            logger.error(f"Error generating personas: {e}")
            return [], [f"generation failed: {e}"]
        if batch is None:
            logger.error("Persona generation timed out")
            return [], ["generation timed out"]
        if not isinstance(batch, PersonaBatch):
            logger.error(f"Unexpected persona batch type: {type(batch).__name__}")
            return [], ["generation returned no persona batch"]

        accepted: list[Persona] = []
        rejected: list[str] = []
        for position, raw in enumerate(batch.personas[:count], start=1):
            try:
                persona = self.parse_draft(raw, iteration, target_job)
            except ValueError as e:
                label = (raw.get("name") if isinstance(raw, dict) else None) or f"draft {position}"
                logger.warning(f"Persona {label} dropped: {e}")
                rejected.append(f"{label}: {e}")
                continue

            reasons = validate_persona(persona, self.constraints)
            if not reasons:
                accepted.append(normalize_personality(persona, self.rng))
                continue

            logger.warning(f"Persona {persona.name} rejected: {', '.join(reasons)}")
            fixed = repair_persona(persona, self.constraints, self.rng)
            if fixed is None:
                rejected.append(f"{persona.name}: {', '.join(reasons)}")
                continue
            logger.info(f"Fixed persona {fixed.name}")
            accepted.append(fixed)

        return accepted, rejected

    async def evolve(self, feedback_summary: str, iteration: int) -> str:
        """Ask for a strategy to make the next personas more demanding."""
        prompt = f"""Based on the following feedback from mock interviews, suggest how to evolve the persona generator to create more challenging and diverse test users.

Feedback Summary:
{feedback_summary}

Current Iteration: {iteration}

Provide specific suggestions for:
1. What new personality types to add
2. What edge cases to cover
3. How to make personas more critical/demanding
4. What interview behaviors to simulate

Return a brief evolution strategy (100-200 words)."""
        try:
            response = await self._budget().with_timeout(
                self.inference.complete([Message(role="user", content=prompt)]), fallback=None
            )
            if isinstance(response, str) and response.strip():
                return response.strip()
        except Exception as e:
            logger.error(f"Error evolving persona generator: {e}")
        logger.warning("Persona evolution fell back to the default strategy")
        return EVOLUTION_FALLBACK
