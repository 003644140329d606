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
"""Read-only quest lookups used to link choices to quest objectives."""

from typing import Iterable, List, Optional, Protocol

from choice_engine.models import Quest, QuestObjective


class QuestCatalog(Protocol):
    """Quest collaborator consulted by the field extractor."""

    def find_active_quest_by_title(self, title: str) -> Optional[Quest]:
        ...

    def first_incomplete_objective(self, quest: Quest) -> Optional[QuestObjective]:
        ...


class InMemoryQuestLog:
    """Quest catalog backed by a snapshot of the player's quest list."""

    def __init__(self, quests: Optional[Iterable[Quest]] = None):
        self._quests: List[Quest] = list(quests or [])

    def find_active_quest_by_title(self, title: str) -> Optional[Quest]:
        # Exact title match; the generator is instructed to quote titles verbatim
        for quest in self._quests:
            if quest.title == title and quest.status == "active":
                return quest
        return None

    def first_incomplete_objective(self, quest: Quest) -> Optional[QuestObjective]:
        for objective in quest.objectives:
            if not objective.completed:
                return objective
        return None

    def __len__(self) -> int:
        return len(self._quests)


EMPTY_QUEST_LOG = InMemoryQuestLog()
