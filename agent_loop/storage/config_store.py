# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The versioned configuration store.

Each module's tunable behaviour (its prompt text) is an append-only series
of ConfigVersions numbered 1, 2, 3, ... The current configuration is always
the highest version; rollback appends a copy of an older payload rather than
rewriting history.
"""

import logging

from typing import Iterable, Mapping

from .repository import LoopRepository
from ..types.loop_types import ConfigVersion

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

DEFAULT_PROMPTS: dict[str, str] = {
    "question_generation": """Generate interview questions that are:
1. Relevant to the position and company
2. Progressive in difficulty
3. Balanced across technical and behavioral topics
4. Encouraging specific examples from candidates""",
    "hint_system": """Generate helpful hints that:
1. Guide thinking without giving away answers
2. Reference relevant frameworks (STAR, etc.)
3. Suggest specific examples to consider
4. Explain why this hint is helpful""",
    "response_analysis": """Analyze candidate responses for:
1. Completeness and depth
2. Use of specific examples
3. Relevance to the question
4. Areas that need follow-up""",
    "next_question": """Decide the next question based on:
1. Quality of previous response
2. Topics already covered
3. Knowledge base insights
4. Interview progress""",
    "persona_generator": """Generate diverse mock personas that:
1. Cover different experience levels
2. Have varied communication styles
3. Represent different industries
4. Include edge cases and challenging behaviors""",
}


class ConfigStore:
    """Append-only configuration history on top of the loop repository."""

    def __init__(self, repository: LoopRepository):
        self.repository = repository

    def current(self, module: str) -> ConfigVersion | None:
        return self.repository.latest_config_version(module)

    def get(self, module: str, version: int) -> ConfigVersion | None:
        return self.repository.get_config_version(module, version)

    def history(self, module: str) -> list[ConfigVersion]:
        return self.repository.list_config_versions(module)

    def modules(self) -> list[str]:
        return self.repository.list_config_modules()

    def append(
        self,
        module: str,
        payload: str,
        changelog: str = "",
        metrics_snapshot: Mapping[str, float] | None = None,
        iteration: int = 0,
    ) -> ConfigVersion:
        version = self.repository.append_config_version(
            module,
            payload,
            changelog=changelog,
            metrics_snapshot=dict(metrics_snapshot or {}),
            iteration=iteration,
        )
        logger.info(f"Stored {module} v{version.version} (iteration {iteration})")
        return version

    def rollback(self, module: str, version: int, iteration: int = 0) -> ConfigVersion:
        """Make an older version current again by appending a copy of it.

        Raises:
            KeyError: if the module has no such version.
        """
        target = self.get(module, version)
        if target is None:
            raise KeyError(f"{module} has no version {version}")
        return self.append(
            module,
            target.payload,
            changelog=f"Rollback to v{version}",
            metrics_snapshot=target.metrics_snapshot,
            iteration=iteration,
        )

    def initialize_defaults(self, defaults: Mapping[str, str] = DEFAULT_PROMPTS) -> list[ConfigVersion]:
        """Seed version 1 for every module that has no history yet."""
        created = []
        for module, payload in defaults.items():
            if self.current(module) is None:
                created.append(self.append(module, payload, changelog="Initial version", iteration=0))
        return created

    def current_versions(self, modules: Iterable[str] | None = None) -> dict[str, ConfigVersion]:
        modules = list(modules) if modules is not None else self.modules()
        result = {}
        for module in modules:
            version = self.current(module)
            if version is not None:
                result[module] = version
        return result

    def current_payloads(self, modules: Iterable[str] | None = None) -> dict[str, str]:
        return {m: v.payload for m, v in self.current_versions(modules).items()}
