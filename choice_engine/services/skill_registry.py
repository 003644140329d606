# Copyright 2025 John Brosnihan
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Read-only skill/mastery lookups for the skill mastery modifier.

A skill only counts when two independent facts agree: the player character
lists it among its learned skills, and the knowledge base holds a skill
entity for it with a recorded mastery tier.
"""

from typing import Iterable, List, Optional, Protocol

from choice_engine.logging import StructuredLogger
from choice_engine.models import MasteryTier, SkillEntity, normalize_label

logger = StructuredLogger(__name__)


class SkillRegistry(Protocol):
    """Skill collaborator consulted by the skill mastery modifier."""

    def find_learned_skill_mastery(self, skill_name: str) -> Optional[MasteryTier]:
        ...


class InMemorySkillRegistry:
    """Skill registry backed by a snapshot of learned skills and skill entities."""

    def __init__(
        self,
        skills: Optional[Iterable[SkillEntity]] = None,
        learned_skills: Optional[Iterable[str]] = None
    ):
        self._skills: List[SkillEntity] = list(skills or [])
        self._learned = {normalize_label(name) for name in (learned_skills or []) if name}

    def is_learned(self, skill_name: str) -> bool:
        return normalize_label(skill_name) in self._learned

    def find_skill_entity(self, skill_name: str) -> Optional[SkillEntity]:
        """Return the first skill entity whose name contains ``skill_name``."""
        needle = normalize_label(skill_name)
        if not needle:
            return None
        for entity in self._skills:
            if needle in normalize_label(entity.name):
                return entity
        return None

    def find_learned_skill_mastery(self, skill_name: str) -> Optional[MasteryTier]:
        """Mastery tier of a learned skill, or None when it is unknown/unlearned.

        Args:
            skill_name: Skill name extracted from choice content

        Returns:
            The recorded MasteryTier, or None
        """
        if not self.is_learned(skill_name):
            logger.debug("Skill not learned by player", skill_name=skill_name)
            return None

        entity = self.find_skill_entity(skill_name)
        if entity is None or entity.mastery is None:
            logger.debug("Learned skill has no recorded mastery", skill_name=skill_name)
            return None
        return entity.mastery


EMPTY_SKILL_REGISTRY = InMemorySkillRegistry()
