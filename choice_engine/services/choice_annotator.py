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
"""Choice annotation pipeline.

Runs every raw choice through the four stages in a fixed order:

    extract -> infer -> category support -> skill mastery -> ChoiceRecord

The inferred rate and tier are frozen as ``original_*`` on the record; the
two modifiers only touch the working values, and mastery stacks on top of
whatever category support produced.
"""

from typing import List, Optional

from choice_engine.logging import PhaseTimer, StructuredLogger, sanitize_for_log
from choice_engine.metrics import MetricsTimer, get_metrics_collector
from choice_engine.models import ChoiceRecord
from choice_engine.services.category_support import CategorySupportModifier, CategorySupportState
from choice_engine.services.field_extractor import FieldExtractor
from choice_engine.services.field_inferencer import FieldInferencer
from choice_engine.services.quest_log import EMPTY_QUEST_LOG, QuestCatalog
from choice_engine.services.skill_mastery import SkillMasteryModifier
from choice_engine.services.skill_registry import EMPTY_SKILL_REGISTRY, SkillRegistry

logger = StructuredLogger(__name__)


class ChoiceAnnotator:
    """Composes the extractor, inferencer and both modifiers."""

    def __init__(
        self,
        extractor: Optional[FieldExtractor] = None,
        inferencer: Optional[FieldInferencer] = None,
        support_modifier: Optional[CategorySupportModifier] = None,
        mastery_modifier: Optional[SkillMasteryModifier] = None
    ):
        self.extractor = extractor or FieldExtractor()
        self.inferencer = inferencer or FieldInferencer()
        self.support_modifier = support_modifier or CategorySupportModifier()
        self.mastery_modifier = mastery_modifier or SkillMasteryModifier()

    def annotate(
        self,
        raw: str,
        category_state: CategorySupportState,
        quests: QuestCatalog = EMPTY_QUEST_LOG,
        skills: SkillRegistry = EMPTY_SKILL_REGISTRY
    ) -> ChoiceRecord:
        """Annotate one raw choice string.

        Args:
            raw: Choice text as produced by the generator
            category_state: Session's last-selected-category slot (read only)
            quests: Quest collaborator for quest references
            skills: Skill collaborator for mastery lookup

        Returns:
            ChoiceRecord with every field populated
        """
        extracted = self.extractor.extract(raw, quests)
        fields = self.inferencer.infer(extracted)

        support = self.support_modifier.apply_support(
            fields.success_rate,
            fields.risk_tier,
            fields.category,
            category_state
        )

        skill_name, mastery = self.mastery_modifier.resolve_skill(fields.content, skills)
        outcome = self.mastery_modifier.apply_mastery(support.success_rate, support.risk_tier, mastery)
        if outcome.boosted:
            logger.debug(
                "Skill mastery applied",
                skill=sanitize_for_log(skill_name, 60),
                mastery=mastery.value,
                success_rate=outcome.success_rate
            )

        return ChoiceRecord(
            content=fields.content,
            time_estimate=fields.time_estimate,
            success_rate=outcome.success_rate,
            original_success_rate=fields.success_rate,
            risk_tier=outcome.risk_tier,
            original_risk_tier=fields.risk_tier,
            risk_description=fields.risk_description,
            reward_text=fields.reward_text,
            is_nsfw=fields.is_nsfw,
            category=fields.category,
            quest_link=fields.quest_link,
            support_indicator=support.indicator,
            support_tooltip=support.tooltip,
            is_skill_boosted=outcome.boosted,
            skill_name=skill_name if outcome.boosted else None,
        )

    def annotate_all(
        self,
        raw_choices: List[str],
        category_state: CategorySupportState,
        quests: QuestCatalog = EMPTY_QUEST_LOG,
        skills: SkillRegistry = EMPTY_SKILL_REGISTRY
    ) -> List[ChoiceRecord]:
        """Annotate a batch of choices against the same session state."""
        with PhaseTimer("choice_annotation", logger), MetricsTimer("annotate_choices"):
            records = [self.annotate(raw, category_state, quests, skills) for raw in raw_choices]

        if (collector := get_metrics_collector()):
            for record in records:
                collector.record_choice_event("annotated")
                if record.support_indicator:
                    collector.record_choice_event("category_support_applied")
                if record.is_skill_boosted:
                    collector.record_choice_event("mastery_applied")
                if record.quest_link:
                    collector.record_choice_event("quest_linked")

        logger.info("Annotated choices", count=len(records))
        return records
