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
"""Category support: a bonus carried over from the previously chosen category.

When the player's last chosen option belongs to a category that supports the
category of a newly offered choice (scouting before a fight, persuading
before acting), that choice gets a success-rate bonus and a risk reduction.
This modifier runs before skill mastery; the mastery bonus stacks on top of
whatever category support produced.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional, Tuple, Union

from choice_engine.logging import StructuredLogger
from choice_engine.models import (
    NO_BONUS,
    ChoiceCategory,
    ModifierBonus,
    RiskTier,
    saturate_rate,
)

logger = StructuredLogger(__name__)

SUPPORT_INDICATOR = "🔗"


@dataclass(frozen=True)
class CategorySupportRule:
    """Which previous categories support a category, and the bonus they grant."""
    supported_by: FrozenSet[ChoiceCategory]
    bonus: ModifierBonus


_STANDARD_SUPPORT_BONUS = ModifierBonus(success_bonus=15, risk_reduction=1)

CATEGORY_SUPPORT_RULES: Mapping[ChoiceCategory, CategorySupportRule] = MappingProxyType({
    ChoiceCategory.COMBAT: CategorySupportRule(
        frozenset({ChoiceCategory.EXPLORATION, ChoiceCategory.SOCIAL, ChoiceCategory.ACTION}),
        _STANDARD_SUPPORT_BONUS,
    ),
    ChoiceCategory.ACTION: CategorySupportRule(
        frozenset({ChoiceCategory.EXPLORATION, ChoiceCategory.SOCIAL}),
        _STANDARD_SUPPORT_BONUS,
    ),
    ChoiceCategory.SCENE_TRANSITION: CategorySupportRule(
        frozenset({ChoiceCategory.ACTION, ChoiceCategory.EXPLORATION}),
        _STANDARD_SUPPORT_BONUS,
    ),
    ChoiceCategory.SOCIAL: CategorySupportRule(
        frozenset({ChoiceCategory.EXPLORATION}),
        _STANDARD_SUPPORT_BONUS,
    ),
    ChoiceCategory.EXPLORATION: CategorySupportRule(frozenset(), _STANDARD_SUPPORT_BONUS),
    ChoiceCategory.FAST_FORWARD: CategorySupportRule(frozenset(), _STANDARD_SUPPORT_BONUS),
})

SUPPORT_EXPLANATIONS: Mapping[Tuple[ChoiceCategory, ChoiceCategory], str] = MappingProxyType({
    (ChoiceCategory.EXPLORATION, ChoiceCategory.COMBAT): "Thông tin khám phá giúp chiến đấu hiệu quả hơn",
    (ChoiceCategory.SOCIAL, ChoiceCategory.COMBAT): "Giao tiếp có thể làm phân tâm đối thủ",
    (ChoiceCategory.ACTION, ChoiceCategory.COMBAT): "Chuẩn bị hành động tạo lợi thế chiến thuật",
    (ChoiceCategory.EXPLORATION, ChoiceCategory.ACTION): "Hiểu biết tình huống giúp hành động chính xác",
    (ChoiceCategory.SOCIAL, ChoiceCategory.ACTION): "Thuyết phục có thể tạo cơ hội hành động",
    (ChoiceCategory.ACTION, ChoiceCategory.SCENE_TRANSITION): "Hành động tạo điều kiện di chuyển",
    (ChoiceCategory.EXPLORATION, ChoiceCategory.SCENE_TRANSITION): "Khám phá giúp tìm đường đi tốt hơn",
    (ChoiceCategory.EXPLORATION, ChoiceCategory.SOCIAL): "Hiểu biết giúp giao tiếp thuyết phục hơn",
})


class CategorySupportState:
    """Single-slot memory of the most recently chosen category.

    One instance belongs to one game session. The presentation layer sets it
    when the player picks an option and clears it when the player submits a
    free-text action; the modifier reads it on the next rendering pass.
    """

    def __init__(self):
        self._last_selected: Optional[ChoiceCategory] = None

    def set_last_selected(self, category: Union[ChoiceCategory, str, None]) -> Optional[ChoiceCategory]:
        """Record the chosen category; unknown labels clear the slot.

        Returns:
            The stored ChoiceCategory, or None
        """
        self._last_selected = ChoiceCategory.parse(category) if category is not None else None
        logger.debug(
            "Last selected category updated",
            category=self._last_selected.value if self._last_selected else None
        )
        return self._last_selected

    def get_last_selected(self) -> Optional[ChoiceCategory]:
        return self._last_selected

    def reset(self) -> None:
        self._last_selected = None


@dataclass(frozen=True)
class CategorySupportResult:
    """Bonus found for a category pair (zero bonus when unsupported)."""
    bonus: ModifierBonus
    supporting_category: Optional[ChoiceCategory] = None
    explanation: str = ""

    @property
    def has_support(self) -> bool:
        return self.bonus.success_bonus > 0


@dataclass(frozen=True)
class SupportOutcome:
    """Rate/tier after category support plus its presentation hints."""
    success_rate: int
    risk_tier: RiskTier
    indicator: str = ""
    tooltip: str = ""
    bonus: ModifierBonus = NO_BONUS


UNSUPPORTED = CategorySupportResult(bonus=NO_BONUS)


def calculate_category_support(
    current: Optional[ChoiceCategory],
    last_selected: Optional[ChoiceCategory],
    rules: Mapping[ChoiceCategory, CategorySupportRule] = CATEGORY_SUPPORT_RULES
) -> CategorySupportResult:
    """Look up the support bonus the previous category grants the current one."""
    if current is None or last_selected is None:
        return UNSUPPORTED

    rule = rules.get(current)
    if rule is None or last_selected not in rule.supported_by:
        return UNSUPPORTED

    explanation = SUPPORT_EXPLANATIONS.get(
        (last_selected, current),
        f"{last_selected.value} hỗ trợ {current.value}"
    )
    return CategorySupportResult(
        bonus=rule.bonus,
        supporting_category=last_selected,
        explanation=explanation,
    )


def apply_bonus(success_rate: int, risk_tier: RiskTier, bonus: ModifierBonus) -> Tuple[int, RiskTier]:
    """Add a bonus with 100-cap saturation and floor-at-Low tier reduction."""
    if bonus.success_bonus > 0:
        success_rate = saturate_rate(success_rate + bonus.success_bonus)
    if bonus.risk_reduction > 0:
        risk_tier = risk_tier.reduced(bonus.risk_reduction)
    return success_rate, risk_tier


class CategorySupportModifier:
    """Applies category support to a choice's working rate and tier."""

    def __init__(self, rules: Mapping[ChoiceCategory, CategorySupportRule] = CATEGORY_SUPPORT_RULES):
        self.rules = rules

    def apply_support(
        self,
        success_rate: int,
        risk_tier: RiskTier,
        category: Union[ChoiceCategory, str, None],
        state: CategorySupportState
    ) -> SupportOutcome:
        """Apply the category support bonus, if any.

        Args:
            success_rate: Working success rate (0-100)
            risk_tier: Working risk tier
            category: Category label of the choice being rendered
            state: Session's last-selected-category slot

        Returns:
            SupportOutcome; indicator and tooltip are empty unless a
            non-zero bonus was applied
        """
        current = ChoiceCategory.parse(category)
        support = calculate_category_support(current, state.get_last_selected(), self.rules)

        if not support.has_support:
            return SupportOutcome(success_rate=success_rate, risk_tier=risk_tier)

        new_rate, new_tier = apply_bonus(success_rate, risk_tier, support.bonus)
        logger.info(
            "Category support applied",
            supporting=support.supporting_category.value,
            category=current.value,
            success_rate=f"{success_rate}->{new_rate}",
            risk_tier=f"{risk_tier.value}->{new_tier.value}"
        )
        return SupportOutcome(
            success_rate=new_rate,
            risk_tier=new_tier,
            indicator=SUPPORT_INDICATOR,
            tooltip=f"Được hỗ trợ bởi {support.supporting_category.value}: {support.explanation}",
            bonus=support.bonus,
        )
