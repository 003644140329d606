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
"""Skill mastery adjustments for choices that use a learned skill.

Each mastery tier maps to a fixed (success bonus, risk reduction) pair.
MASTERY_BONUSES is the only copy of that table: the pipeline modifier and
the standalone helpers used to pre-render skill hints both read it.

Which skill a choice uses is a heuristic: the name is pulled from the
content with an ordered list of phrase patterns, then confirmed against the
skill registry. Not finding a name, or finding one the player has not
learned, simply means no bonus.
"""

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

from choice_engine.logging import StructuredLogger, sanitize_for_log
from choice_engine.models import (
    MasteryTier,
    ModifierBonus,
    RiskTier,
    saturate_rate,
)
from choice_engine.services.skill_registry import SkillRegistry

logger = StructuredLogger(__name__)

MASTERY_BONUSES: Mapping[MasteryTier, ModifierBonus] = MappingProxyType({
    MasteryTier.NOVICE: ModifierBonus(success_bonus=0, risk_reduction=0),
    MasteryTier.INTERMEDIATE: ModifierBonus(success_bonus=5, risk_reduction=0),
    MasteryTier.ADVANCED: ModifierBonus(success_bonus=10, risk_reduction=1),
    MasteryTier.GREAT_ACCOMPLISHMENT: ModifierBonus(success_bonus=15, risk_reduction=1),
    MasteryTier.PERFECTION: ModifierBonus(success_bonus=20, risk_reduction=2),
})

SKILL_NAME_SUFFIXES = ("Chú", "Thuật", "Pháp", "Công", "Kỹ", "Nhãn")
_VIETNAMESE_UPPER = "A-ZÀÁẠẢÃÂẦẤẬẨẪĂẰẮẶẲẴÈÉẸẺẼÊỀẾỆỂỄÌÍỊỈĨÒÓỌỎÕÔỒỐỘỔỖƠỜỚỢỞỠÙÚỤỦŨƯỪỨỰỬỮỲÝỴỶỸĐ"

# Priority order matters: earlier patterns are more reliable
SKILL_NAME_PATTERNS: Tuple[re.Pattern, ...] = (
    # "sử dụng Huyết Đế Chú (" / "dùng Kiếm Pháp, ..."
    re.compile(r'(?:sử dụng|dùng|thi triển)\s+([^(,\-.\n]+)(?:\s*\(|,|-)', re.IGNORECASE),
    # "Huyết Đế Chú để tấn công"
    re.compile(r'([^(,\-.\n]+)\s+để\s+', re.IGNORECASE),
    # "với Thiên Cơ Bí Nhãn"
    re.compile(r'với\s+([^(,\-.\n]+)', re.IGNORECASE),
    # Capitalized phrase ending in a skill suffix
    re.compile(
        rf'([{_VIETNAMESE_UPPER}][a-zA-ZÀ-ỹ\s]*?(?:' + '|'.join(SKILL_NAME_SUFFIXES) + r'))'
    ),
)
MIN_SKILL_NAME_LENGTH = 3

_LOOSE_SUCCESS_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r'(\d+)%\s*(?:thành công|success)', re.IGNORECASE),
    re.compile(r'\((\d+)%[^)]*\)'),
    re.compile(r'≥(\d+)%'),
    re.compile(r'(\d+)%'),
)
_RISK_WORDS = r'(Cực Cao|Cao|Trung Bình|Thấp)'
_ANCHORED_RISK_PATTERN = re.compile(r'Rủi ro:\s*' + _RISK_WORDS, re.IGNORECASE)
_RISK_WORD_PATTERN = re.compile(_RISK_WORDS, re.IGNORECASE)


def get_mastery_bonus(mastery: Union[MasteryTier, str, None]) -> Optional[ModifierBonus]:
    """Return the bonus for a mastery tier, or None when it is unrecognized."""
    tier = MasteryTier.parse(mastery)
    if tier is None:
        return None
    return MASTERY_BONUSES[tier]


def adjust_success_rate(base_success_rate: int, mastery: Union[MasteryTier, str, None]) -> int:
    """Add the mastery success bonus, capped at 100.

    Unrecognized mastery values leave the rate unchanged.
    """
    bonus = get_mastery_bonus(mastery)
    if bonus is None:
        logger.warning("Invalid mastery tier, using base rate", mastery=mastery)
        return base_success_rate
    return saturate_rate(base_success_rate + bonus.success_bonus)


def adjust_risk_tier(
    base_risk_tier: Union[RiskTier, str],
    mastery: Union[MasteryTier, str, None]
) -> Union[RiskTier, str]:
    """Reduce a risk tier by the mastery's risk reduction, floored at LOW.

    Unrecognized mastery or risk values are returned unchanged.
    """
    bonus = get_mastery_bonus(mastery)
    if bonus is None:
        logger.warning("Invalid mastery tier, using base risk", mastery=mastery)
        return base_risk_tier

    tier = RiskTier.parse(base_risk_tier)
    if tier is None:
        logger.warning("Invalid risk tier, using base risk", risk_tier=base_risk_tier)
        return base_risk_tier
    return tier.reduced(bonus.risk_reduction)


@dataclass(frozen=True)
class MasteryAdjustment:
    """Result of apply_mastery_adjustments."""
    success_rate: int
    risk_tier: Union[RiskTier, str]
    adjustment_applied: bool


def apply_mastery_adjustments(
    base_success_rate: int,
    base_risk_tier: Union[RiskTier, str],
    mastery: Union[MasteryTier, str, None]
) -> MasteryAdjustment:
    """Apply both mastery adjustments and report whether anything changed."""
    if get_mastery_bonus(mastery) is None:
        return MasteryAdjustment(base_success_rate, base_risk_tier, False)

    success_rate = adjust_success_rate(base_success_rate, mastery)
    risk_tier = adjust_risk_tier(base_risk_tier, mastery)
    changed = success_rate != base_success_rate or RiskTier.parse(risk_tier) != RiskTier.parse(base_risk_tier)
    return MasteryAdjustment(success_rate, risk_tier, changed)


def extract_skill_name(text: str) -> Optional[str]:
    """Pull a probable skill name out of choice content.

    Patterns are tried in priority order; the first match of at least
    MIN_SKILL_NAME_LENGTH characters wins.
    """
    for pattern in SKILL_NAME_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1):
            name = match.group(1).strip()
            if len(name) >= MIN_SKILL_NAME_LENGTH:
                return name
    return None


def _find_success_rate(text: str) -> Optional[re.Match]:
    for pattern in _LOOSE_SUCCESS_PATTERNS:
        match = pattern.search(text)
        if match and 0 <= int(match.group(1)) <= 100:
            return match
    return None


def _find_risk_word(text: str) -> Optional[re.Match]:
    # Mastery labels such as "(Cao Cấp)" contain risk words; prefer the labelled one
    return _ANCHORED_RISK_PATTERN.search(text) or _RISK_WORD_PATTERN.search(text)


def parse_success_rate_from_text(text: str) -> Optional[int]:
    """Find a success percentage in loosely formatted choice text."""
    match = _find_success_rate(text)
    return int(match.group(1)) if match else None


def parse_risk_tier_from_text(text: str) -> Optional[RiskTier]:
    """Find the risk tier word, preferring the one after ``Rủi ro:``."""
    match = _find_risk_word(text)
    return RiskTier.parse(match.group(1)) if match else None


def _replace_group(text: str, match: re.Match, replacement: str) -> str:
    return text[:match.start(1)] + replacement + text[match.end(1):]


def render_adjusted_choice_text(text: str, mastery: Union[MasteryTier, str, None]) -> str:
    """Rewrite a raw choice's percentage and risk word for a mastery tier.

    Used to pre-render skill-choice hints. Only the spans the rate and tier
    were read from are rewritten. Text is returned unchanged when the rate
    or risk cannot be found or the mastery changes nothing.
    """
    rate_match = _find_success_rate(text)
    risk_match = _find_risk_word(text)
    if rate_match is None or risk_match is None:
        logger.warning(
            "Could not parse success rate or risk from choice",
            choice=sanitize_for_log(text, 80)
        )
        return text

    base_rate = int(rate_match.group(1))
    base_tier = RiskTier.parse(risk_match.group(1))
    adjustment = apply_mastery_adjustments(base_rate, base_tier, mastery)
    if not adjustment.adjustment_applied:
        return text

    new_tier = RiskTier.parse(adjustment.risk_tier).value
    # Rewrite the later span first so the earlier span's offsets stay valid
    edits = sorted(
        [(rate_match, str(adjustment.success_rate)), (risk_match, new_tier)],
        key=lambda edit: edit[0].start(1),
        reverse=True
    )
    for match, replacement in edits:
        text = _replace_group(text, match, replacement)
    return text


@dataclass(frozen=True)
class MasteryOutcome:
    """Rate/tier after skill mastery, and whether a bonus applied."""
    success_rate: int
    risk_tier: RiskTier
    boosted: bool = False


class SkillMasteryModifier:
    """Applies a learned skill's mastery bonus on top of category support."""

    def __init__(self, bonuses: Mapping[MasteryTier, ModifierBonus] = MASTERY_BONUSES):
        self.bonuses = bonuses

    def resolve_skill(self, content: str, registry: SkillRegistry) -> Tuple[Optional[str], Optional[MasteryTier]]:
        """Find the skill a choice uses and the player's mastery of it.

        Returns:
            (skill_name, mastery); mastery is None when the skill is not
            learned or has no recorded tier, both are None when no name
            could be extracted
        """
        skill_name = extract_skill_name(content)
        if skill_name is None:
            return None, None
        return skill_name, registry.find_learned_skill_mastery(skill_name)

    def apply_mastery(
        self,
        success_rate: int,
        risk_tier: RiskTier,
        mastery: Union[MasteryTier, str, None]
    ) -> MasteryOutcome:
        """Apply the mastery bonus for ``mastery`` to a working rate/tier.

        Novice and unrecognized tiers leave the values untouched with
        boosted=False.
        """
        tier = MasteryTier.parse(mastery)
        if tier is None or tier is MasteryTier.NOVICE:
            return MasteryOutcome(success_rate, risk_tier, boosted=False)

        bonus = self.bonuses[tier]
        return MasteryOutcome(
            success_rate=saturate_rate(success_rate + bonus.success_bonus),
            risk_tier=risk_tier.reduced(bonus.risk_reduction),
            boosted=True,
        )
