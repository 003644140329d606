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
"""Field extraction for raw choice strings produced by the story generator.

The generator annotates each choice with a fixed grammar of markers and
Vietnamese phrase templates, for example::

    ✦Chiến đấu✦ Tấn công kẻ địch (5 phút)
    Tỷ lệ thành công: 40%
    Rủi ro: Cao, có thể bị thương
    Phần thưởng: 50 vàng
    Mục tiêu nhiệm vụ "Diệt sói"

Fields are matched in a fixed order and each matched span is removed from a
working copy, so later patterns only see what earlier ones left behind.
Reordering the steps changes results: time is matched before risk, so a
parenthesized time inside a risk description ("Rủi ro: Cao, mất (2 giờ) để
hồi phục") becomes the choice's time and drops out of the description.
Whatever remains is the player-facing content.
"""

import re
import unicodedata
from typing import Optional, Tuple

from choice_engine.logging import StructuredLogger, sanitize_for_log
from choice_engine.models import (
    PartialChoiceFields,
    QuestLink,
    RiskTier,
    saturate_rate,
)
from choice_engine.services.quest_log import EMPTY_QUEST_LOG, QuestCatalog

logger = StructuredLogger(__name__)

CATEGORY_DELIMITER = "✦"
TIME_UNIT_WORDS = ("phút", "giờ", "tiếng", "ngày", "tuần", "tháng", "năm")

# Markers that may follow a risk or reward statement on the same line
_TRAILING_FIELD_LOOKAHEAD = r'(?=\n|$|Phần thưởng:|Mục tiêu nhiệm vụ)'

CATEGORY_PATTERN = re.compile(
    rf'^{CATEGORY_DELIMITER}([^{CATEGORY_DELIMITER}]+){CATEGORY_DELIMITER}\s*'
)
NSFW_PATTERN = re.compile(r'\(NSFW\)', re.IGNORECASE)
TIME_PATTERN = re.compile(
    r'\(([^)]*(?:' + '|'.join(TIME_UNIT_WORDS) + r')[^)]*)\)',
    re.IGNORECASE
)
SUCCESS_RATE_PATTERN = re.compile(r'(?:Tỷ|Tỉ) lệ thành công:\s*(\d+)\s*%', re.IGNORECASE)
RISK_PATTERN = re.compile(
    r'Rủi ro:[ \t]*([^,\n]*?)(?:,[ \t]*([^\n]*?))?[ \t]*' + _TRAILING_FIELD_LOOKAHEAD,
    re.IGNORECASE | re.MULTILINE
)
REWARD_PATTERN = re.compile(
    r'Phần thưởng:[ \t]*(.*?)[ \t]*' + _TRAILING_FIELD_LOOKAHEAD,
    re.IGNORECASE | re.MULTILINE
)
QUEST_REFERENCE_PATTERN = re.compile(r'Mục tiêu nhiệm vụ ["“]([^"”]+)["”]', re.IGNORECASE)
LEADING_ORDINAL_PATTERN = re.compile(r'^\d+\.\s*')

# Checked in order: "cực cao" must win over the plain "cao" it contains
RISK_WORDS: Tuple[Tuple[RiskTier, Tuple[str, ...]], ...] = (
    (RiskTier.LOW, ("thấp", "thap")),
    (RiskTier.MEDIUM, ("trung bình", "trung binh")),
    (RiskTier.CRITICAL, ("cực cao", "cuc cao")),
    (RiskTier.HIGH, ("cao",)),
)


def normalize_raw_choice(raw: str) -> str:
    """Turn literal ``\\n`` escapes into newlines and NFC-normalize."""
    text = raw.replace('\\n', '\n')
    return unicodedata.normalize("NFC", text)


def resolve_risk_tier(risk_text: str) -> Optional[RiskTier]:
    """Map the tier word of a risk statement onto RiskTier by containment."""
    lowered = risk_text.strip().lower()
    for tier, words in RISK_WORDS:
        if any(word in lowered for word in words):
            return tier
    return None


def normalize_content(text: str) -> str:
    """Strip ordinal numbering and collapse all whitespace to single spaces."""
    text = LEADING_ORDINAL_PATTERN.sub('', text.strip())
    text = re.sub(r'\n+', ' ', text)
    text = re.sub(r'\s+', ' ', text)
    return text.strip()


def collapse_whitespace(text: str) -> str:
    return re.sub(r'\s+', ' ', text).strip()


def _cut(text: str, match: re.Match) -> str:
    """Remove a matched span from the working text."""
    return (text[:match.start()] + ' ' + text[match.end():]).strip()


class FieldExtractor:
    """Parses one raw choice string into PartialChoiceFields.

    The extractor is pure: identical input and quest catalog always produce
    identical output. Missing fields are left as None for the inferencer.
    """

    def extract(
        self,
        raw: str,
        quests: QuestCatalog = EMPTY_QUEST_LOG
    ) -> PartialChoiceFields:
        """Extract structured fields from a raw choice string.

        Args:
            raw: Choice text as produced by the generator
            quests: Quest collaborator used to resolve quest references

        Returns:
            PartialChoiceFields with the cleaned content and any matched fields
        """
        working = normalize_raw_choice(raw)

        category = None
        match = CATEGORY_PATTERN.match(working)
        if match:
            category = match.group(1).strip() or None
            working = _cut(working, match)

        is_nsfw = False
        match = NSFW_PATTERN.search(working)
        if match:
            is_nsfw = True
            working = _cut(working, match)

        time_estimate = None
        match = TIME_PATTERN.search(working)
        if match:
            time_estimate = match.group(1).strip()
            working = _cut(working, match)

        success_rate = None
        match = SUCCESS_RATE_PATTERN.search(working)
        if match:
            success_rate = saturate_rate(int(match.group(1)))
            working = _cut(working, match)

        risk_tier = None
        risk_description = None
        match = RISK_PATTERN.search(working)
        if match:
            risk_tier = resolve_risk_tier(match.group(1))
            if risk_tier is None:
                logger.debug(
                    "Unrecognized risk tier word",
                    risk_text=sanitize_for_log(match.group(1), 50)
                )
            if match.group(2) and match.group(2).strip():
                risk_description = collapse_whitespace(match.group(2))
            working = _cut(working, match)

        reward_text = None
        match = REWARD_PATTERN.search(working)
        if match:
            reward_text = collapse_whitespace(match.group(1)) or None
            working = _cut(working, match)

        quest_link = None
        match = QUEST_REFERENCE_PATTERN.search(working)
        if match:
            quest_link = self._resolve_quest_link(match.group(1), quests)
            working = _cut(working, match)

        return PartialChoiceFields(
            content=normalize_content(working),
            category=category,
            time_estimate=time_estimate,
            success_rate=success_rate,
            risk_tier=risk_tier,
            risk_description=risk_description,
            reward_text=reward_text,
            is_nsfw=is_nsfw,
            quest_link=quest_link,
        )

    @staticmethod
    def _resolve_quest_link(title: str, quests: QuestCatalog) -> Optional[QuestLink]:
        quest = quests.find_active_quest_by_title(title)
        if quest is None:
            logger.debug("Quest reference not resolved: no active quest", quest_title=sanitize_for_log(title, 80))
            return None

        objective = quests.first_incomplete_objective(quest)
        if objective is None:
            logger.debug("Quest reference not resolved: no incomplete objective", quest_title=sanitize_for_log(title, 80))
            return None

        return QuestLink(
            quest_title=quest.title,
            objective_id=objective.id,
            objective_description=objective.description,
        )
