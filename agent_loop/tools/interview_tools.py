# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import re
import logging

from pydantic import Field

from .base_tool import BaseTool
from ..types.tool_types import ToolResult
from ..grading.similarity import jaccard_similarity

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class AnalyzeDifficulty(BaseTool):
    TOOL_NAME = "analyze_difficulty"
    TOOL_DESCRIPTION = """Analyze the difficulty level of an interview question relative to the candidate's experience.
Returns one of Easy, Medium or Hard together with a confidence value."""
    ESTIMATED_COST_MS = 200

    question: str = Field(..., description="The question to analyze")
    user_experience: float = Field(0, description="Candidate's years of experience", ge=0)

    async def run(self) -> ToolResult:
        text = self.question.lower()
        difficulty = "Medium"
        if "system design" in text or "architecture" in text:
            difficulty = "Medium" if self.user_experience >= 5 else "Hard"
        elif "basic" in text or "introduce yourself" in text or "tell me about yourself" in text:
            difficulty = "Easy"
        return self.result({"difficulty": difficulty, "confidence": 0.8})


class CheckUserBackground(BaseTool):
    TOOL_NAME = "check_user_background"
    TOOL_DESCRIPTION = """Check the candidate's skills and experience to personalize questions.
Returns the parsed skill list, years of experience and an inferred seniority level."""
    ESTIMATED_COST_MS = 100

    skills: str = Field("", description="Candidate skills, comma separated")
    experience: str = Field("", description="Free-text description of the candidate's experience")

    async def run(self) -> ToolResult:
        skill_list = [s.strip() for s in self.skills.split(",") if s.strip()]
        match = re.search(r"(\d+)\s*(?:\+\s*)?years?", self.experience, re.IGNORECASE)
        years = int(match.group(1)) if match else 0
        level = "Senior" if years >= 5 else "Mid" if years >= 2 else "Junior"
        return self.result(
            {"skills": skill_list, "years_of_experience": years, "level": level}
        )


class CompareSimilarity(BaseTool):
    TOOL_NAME = "compare_similarity"
    TOOL_DESCRIPTION = """Measure word overlap between a draft and previously used texts, to avoid repeating earlier questions.
Returns the highest Jaccard similarity found and the text it was found against."""
    ESTIMATED_COST_MS = 100

    draft: str = Field(..., description="The draft text to check")
    previous: list[str] = Field(default_factory=list, description="Texts already used")

    async def run(self) -> ToolResult:
        best, best_text = 0.0, None
        for text in self.previous:
            similarity = jaccard_similarity(self.draft, text)
            if similarity > best:
                best, best_text = similarity, text
        return self.result(
            {
                "max_similarity": round(best, 3),
                "most_similar_to": best_text[:80] if best_text else None,
            }
        )
