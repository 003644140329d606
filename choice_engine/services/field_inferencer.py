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
"""Fallback inference for choice fields the extractor could not read.

Policy is three-way for both success rate and risk: optimistic when the
content reads as easy/safe, pessimistic when it reads as hard/dangerous,
and a moderate default otherwise. After this stage every choice has a
success rate, a risk tier and a reward text.
"""

from typing import Optional, Tuple

from choice_engine.config import DEFAULT_REWARD_TEXT
from choice_engine.logging import StructuredLogger
from choice_engine.models import CompleteChoiceFields, PartialChoiceFields, RiskTier

logger = StructuredLogger(__name__)

EASY_KEYWORDS: Tuple[str, ...] = ("dễ dàng", "đơn giản")
HARD_KEYWORDS: Tuple[str, ...] = ("khó khăn", "nguy hiểm")
SAFE_KEYWORDS: Tuple[str, ...] = ("an toàn", "không nguy hiểm")
DANGEROUS_KEYWORDS: Tuple[str, ...] = ("nguy hiểm", "rủi ro cao")

# Negations that must not count as the hard/dangerous keyword they contain
NEGATED_PHRASES: Tuple[str, ...] = ("không nguy hiểm",)

OPTIMISTIC_SUCCESS_RATE = 85
PESSIMISTIC_SUCCESS_RATE = 45
DEFAULT_SUCCESS_RATE = 70


def _contains_any(text: str, keywords: Tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def _without_negations(text: str) -> str:
    for phrase in NEGATED_PHRASES:
        text = text.replace(phrase, " ")
    return text


def infer_success_rate(content: str) -> int:
    """Infer a success rate from content keywords.

    Negated danger phrases are removed before the hard-keyword check, so
    "không nguy hiểm" (not dangerous) yields the default 70 instead of the
    45 a plain substring match on "nguy hiểm" would give.
    """
    lowered = content.lower()
    if _contains_any(lowered, EASY_KEYWORDS):
        return OPTIMISTIC_SUCCESS_RATE
    if _contains_any(_without_negations(lowered), HARD_KEYWORDS):
        return PESSIMISTIC_SUCCESS_RATE
    return DEFAULT_SUCCESS_RATE


def infer_risk_tier(content: str) -> RiskTier:
    """Infer a risk tier from content keywords (safe phrases win)."""
    lowered = content.lower()
    if _contains_any(lowered, SAFE_KEYWORDS):
        return RiskTier.LOW
    if _contains_any(_without_negations(lowered), DANGEROUS_KEYWORDS):
        return RiskTier.HIGH
    return RiskTier.MEDIUM


class FieldInferencer:
    """Fills gaps left by the FieldExtractor."""

    def __init__(self, default_reward_text: str = DEFAULT_REWARD_TEXT):
        self.default_reward_text = default_reward_text

    def infer(self, fields: PartialChoiceFields, content: Optional[str] = None) -> CompleteChoiceFields:
        """Complete the fields of one choice.

        Args:
            fields: Extractor output, possibly missing rate, tier or reward
            content: Text to run the keyword heuristics on; defaults to
                fields.content

        Returns:
            CompleteChoiceFields with success_rate, risk_tier and reward_text set
        """
        text = fields.content if content is None else content

        success_rate = fields.success_rate
        if success_rate is None:
            success_rate = infer_success_rate(text)
            logger.debug("Success rate inferred from content", success_rate=success_rate)

        risk_tier = fields.risk_tier
        if risk_tier is None:
            risk_tier = infer_risk_tier(text)
            logger.debug("Risk tier inferred from content", risk_tier=risk_tier.value)

        reward_text = fields.reward_text or self.default_reward_text

        return CompleteChoiceFields(
            **fields.model_dump(exclude={"success_rate", "risk_tier", "reward_text"}),
            success_rate=success_rate,
            risk_tier=risk_tier,
            reward_text=reward_text,
        )
