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
"""Tests for the full choice annotation pipeline."""

import pytest
from pydantic import ValidationError

from choice_engine.config import DEFAULT_REWARD_TEXT
from choice_engine.metrics import disable_metrics_collector, init_metrics_collector
from choice_engine.models import RiskTier
from choice_engine.services.category_support import SUPPORT_INDICATOR, CategorySupportState
from choice_engine.services.choice_annotator import ChoiceAnnotator

SKILL_COMBAT_CHOICE = (
    "✦Chiến đấu✦ Sử dụng Huyết Đế Chú, tấn công kẻ địch (5 phút) "
    "Tỷ lệ thành công: 40% Rủi ro: Cao"
)
FULLY_ANNOTATED_CHOICE = (
    "✦Chiến đấu✦ Sử dụng Huyết Đế Chú, tấn công kẻ địch (5 phút) "
    "Tỷ lệ thành công: 40% Rủi ro: Cao, có thể bị thương "
    "Phần thưởng: 50 vàng Mục tiêu nhiệm vụ \"Diệt sói\""
)


@pytest.fixture
def annotator():
    return ChoiceAnnotator()


@pytest.fixture
def state():
    return CategorySupportState()


class TestAnnotate:

    def test_every_field_populated(self, annotator, state):
        record = annotator.annotate("Đi dạo quanh chợ", state)

        assert record.content == "Đi dạo quanh chợ"
        assert record.success_rate == 70
        assert record.risk_tier == RiskTier.MEDIUM
        assert record.reward_text == DEFAULT_REWARD_TEXT
        assert record.support_indicator == ""
        assert record.is_skill_boosted is False
        assert record.skill_name is None

    def test_support_then_mastery_stack(self, annotator, state, skill_registry):
        state.set_last_selected("Thăm dò")

        record = annotator.annotate(SKILL_COMBAT_CHOICE, state, skills=skill_registry)

        # 40 + 15 (support) + 10 (Advanced); High -> Medium -> Low
        assert record.success_rate == 65
        assert record.risk_tier == RiskTier.LOW
        assert record.original_success_rate == 40
        assert record.original_risk_tier == RiskTier.HIGH
        assert record.support_indicator == SUPPORT_INDICATOR
        assert record.is_skill_boosted is True
        assert record.skill_name == "Huyết Đế Chú"
        assert record.content == "Sử dụng Huyết Đế Chú, tấn công kẻ địch"

    def test_mastery_without_support(self, annotator, state, skill_registry):
        record = annotator.annotate(SKILL_COMBAT_CHOICE, state, skills=skill_registry)

        assert record.success_rate == 50
        assert record.risk_tier == RiskTier.MEDIUM
        assert record.support_indicator == ""
        assert record.is_skill_boosted is True

    def test_unlearned_skill_not_boosted(self, annotator, state):
        record = annotator.annotate(SKILL_COMBAT_CHOICE, state)

        assert record.success_rate == 40
        assert record.is_skill_boosted is False
        assert record.skill_name is None

    def test_originals_reflect_inferred_values(self, annotator, state):
        state.set_last_selected("Thăm dò")

        record = annotator.annotate("✦Chiến đấu✦ Băng qua đầm lầy nguy hiểm", state)

        assert record.original_success_rate == 45
        assert record.original_risk_tier == RiskTier.HIGH
        assert record.success_rate == 60
        assert record.risk_tier == RiskTier.MEDIUM

    def test_quest_link_carried_through(self, annotator, state, quests):
        record = annotator.annotate("Lần theo dấu sói Mục tiêu nhiệm vụ \"Diệt sói\"", state, quests=quests)

        assert record.quest_link is not None
        assert record.quest_link.objective_id == "obj-2"

    def test_record_is_immutable(self, annotator, state):
        record = annotator.annotate("Đi dạo quanh chợ", state)

        with pytest.raises(ValidationError):
            record.success_rate = 99

    def test_annotation_does_not_touch_category_state(self, annotator, state):
        state.set_last_selected("Thăm dò")
        annotator.annotate(SKILL_COMBAT_CHOICE, state)
        assert state.get_last_selected().value == "Thăm dò"


class TestAnnotateAll:

    def test_preserves_order(self, annotator, state):
        records = annotator.annotate_all(["Một", "Hai", "Ba"], state)
        assert [record.content for record in records] == ["Một", "Hai", "Ba"]

    def test_records_choice_metrics(self, annotator, state, skill_registry, quests):
        collector = init_metrics_collector()
        collector.reset()
        try:
            state.set_last_selected("Thăm dò")
            annotator.annotate_all(
                [SKILL_COMBAT_CHOICE, "Lần theo dấu sói Mục tiêu nhiệm vụ \"Diệt sói\""],
                state,
                quests,
                skill_registry
            )

            choices = collector.get_metrics()["choices"]
            assert choices["annotated"] == 2
            assert choices["category_support_applied"] == 1
            assert choices["mastery_applied"] == 1
            assert choices["quest_linked"] == 1
            assert "annotate_choices" in collector.get_metrics()["latencies"]
        finally:
            disable_metrics_collector()


class TestRepeatedAnnotation:

    def test_same_input_gives_same_record(self, annotator, state, skill_registry, quests):
        state.set_last_selected("Thăm dò")

        first = annotator.annotate(FULLY_ANNOTATED_CHOICE, state, quests, skill_registry)
        second = annotator.annotate(FULLY_ANNOTATED_CHOICE, state, quests, skill_registry)

        assert first == second
        assert second.original_success_rate == 40
        assert second.original_risk_tier == RiskTier.HIGH
        assert second.success_rate == 65
        assert second.risk_tier == RiskTier.LOW

    def test_bonuses_not_cumulative_within_batch(self, annotator, state, skill_registry):
        state.set_last_selected("Thăm dò")

        records = annotator.annotate_all([SKILL_COMBAT_CHOICE] * 3, state, skills=skill_registry)

        assert len(set(records)) == 1
        assert records[-1].success_rate == 65

    def test_fully_annotated_choice_fields(self, annotator, state, quests):
        record = annotator.annotate(FULLY_ANNOTATED_CHOICE, state, quests)

        assert record.category == "Chiến đấu"
        assert record.time_estimate == "5 phút"
        assert record.risk_description == "có thể bị thương"
        assert record.reward_text == "50 vàng"
        assert record.quest_link.objective_id == "obj-2"
        assert record.content == "Sử dụng Huyết Đế Chú, tấn công kẻ địch"

    def test_reannotating_stripped_content_is_complete(self, annotator, state, quests, skill_registry):
        state.set_last_selected("Thăm dò")
        annotated = annotator.annotate(FULLY_ANNOTATED_CHOICE, state, quests, skill_registry)

        record = annotator.annotate(annotated.content, state, quests, skill_registry)

        assert record.content == annotated.content
        assert record.category is None
        assert record.time_estimate is None
        assert record.risk_description is None
        assert record.quest_link is None
        assert record.reward_text == DEFAULT_REWARD_TEXT
        assert record.original_success_rate == 70
        assert record.original_risk_tier == RiskTier.MEDIUM
        # No category means no support; the skill named in the content still counts
        assert record.support_indicator == ""
        assert record.success_rate == 80
        assert record.risk_tier == RiskTier.LOW
        assert record.is_skill_boosted is True
