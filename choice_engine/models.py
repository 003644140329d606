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
"""Data models for the choice engine.

This module defines the domain vocabulary shared by the adjustment pipeline
and the HTTP surface:
- RiskTier / MasteryTier / ChoiceCategory: ordered or closed enumerations
  whose values are the literal words used by the upstream generator
- ModifierBonus: a (success bonus, risk reduction) pair with saturation rules
- Quest, QuestObjective, SkillEntity: read-only collaborator data
- PartialChoiceFields / CompleteChoiceFields / ChoiceRecord: pipeline stages
- Request/response models for the API
"""

import unicodedata
from enum import Enum
from typing import Any, List, Literal, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_SUCCESS_RATE = 100
MIN_SUCCESS_RATE = 0


def normalize_label(text: str) -> str:
    """NFC-normalize, trim and casefold a label for tolerant comparison."""
    return unicodedata.normalize("NFC", text).strip().casefold()


class RiskTier(str, Enum):
    """Qualitative danger level, strictly ordered LOW < MEDIUM < HIGH < CRITICAL."""
    LOW = "Thấp"
    MEDIUM = "Trung Bình"
    HIGH = "Cao"
    CRITICAL = "Cực Cao"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    def reduced(self, tiers: int) -> "RiskTier":
        """Move down by ``tiers`` positions, floored at LOW."""
        if tiers <= 0:
            return self
        return _RISK_ORDER[max(0, self.rank - tiers)]

    @classmethod
    def parse(cls, value: Any) -> Optional["RiskTier"]:
        """Resolve an exact tier word (case-insensitive) or return None."""
        if isinstance(value, RiskTier):
            return value
        if not isinstance(value, str):
            return None
        wanted = normalize_label(value)
        for tier in cls:
            if normalize_label(tier.value) == wanted or tier.name.casefold() == wanted:
                return tier
        return None


_RISK_ORDER = (RiskTier.LOW, RiskTier.MEDIUM, RiskTier.HIGH, RiskTier.CRITICAL)


class MasteryTier(str, Enum):
    """Skill proficiency, ordered NOVICE < ... < PERFECTION."""
    NOVICE = "Sơ Cấp"
    INTERMEDIATE = "Trung Cấp"
    ADVANCED = "Cao Cấp"
    GREAT_ACCOMPLISHMENT = "Đại Thành"
    PERFECTION = "Viên Mãn"

    @property
    def rank(self) -> int:
        return list(MasteryTier).index(self)

    @classmethod
    def parse(cls, value: Any) -> Optional["MasteryTier"]:
        """Resolve a mastery word or enum name; unknown values yield None."""
        if isinstance(value, MasteryTier):
            return value
        if not isinstance(value, str):
            return None
        wanted = normalize_label(value)
        for tier in cls:
            if normalize_label(tier.value) == wanted or tier.name.casefold() == wanted:
                return tier
        return None


class ChoiceCategory(str, Enum):
    """Closed set of choice categories known to the support rules."""
    ACTION = "Hành động"
    SOCIAL = "Xã hội"
    EXPLORATION = "Thăm dò"
    COMBAT = "Chiến đấu"
    SCENE_TRANSITION = "Chuyển cảnh"
    FAST_FORWARD = "Tua nhanh"

    @classmethod
    def parse(cls, value: Any) -> Optional["ChoiceCategory"]:
        """Match a category label case-insensitively; unknown labels yield None.

        Generators are inconsistent about capitalisation ("Chiến Đấu" vs
        "Chiến đấu"), so labels are compared after NFC + casefold.
        """
        if isinstance(value, ChoiceCategory):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        wanted = normalize_label(value)
        for category in cls:
            if normalize_label(category.value) == wanted:
                return category
        return None


class ModifierBonus(NamedTuple):
    """A success-rate bonus and a risk-tier reduction applied together."""
    success_bonus: int
    risk_reduction: int

    @property
    def is_zero(self) -> bool:
        return self.success_bonus <= 0 and self.risk_reduction <= 0


NO_BONUS = ModifierBonus(0, 0)


def saturate_rate(rate: int) -> int:
    """Clamp a success rate into [0, 100]."""
    return max(MIN_SUCCESS_RATE, min(MAX_SUCCESS_RATE, rate))


class QuestObjective(BaseModel):
    """A single objective of a quest."""
    id: str = Field(..., min_length=1, description="Stable objective identifier")
    description: str = Field(..., description="Objective text shown to the player")
    completed: bool = Field(default=False)


class Quest(BaseModel):
    """A quest from the player's quest log (read-only to this service)."""
    title: str = Field(..., min_length=1)
    description: str = Field(default="")
    objectives: List[QuestObjective] = Field(default_factory=list)
    status: Literal["active", "completed", "failed"] = Field(default="active")
    is_main_quest: bool = Field(default=False)
    giver: Optional[str] = None
    reward: Optional[str] = None


class QuestLink(BaseModel):
    """Association from a choice to the incomplete objective it advances."""
    model_config = ConfigDict(frozen=True)

    quest_title: str
    objective_id: str
    objective_description: str


class SkillEntity(BaseModel):
    """A knowledge-base entity tagged as a skill."""
    name: str = Field(..., min_length=1)
    mastery: Optional[MasteryTier] = Field(
        default=None,
        description="Current mastery tier; unknown words are treated as absent"
    )
    description: Optional[str] = None

    @field_validator('mastery', mode='before')
    @classmethod
    def parse_mastery(cls, v: Any) -> Optional[MasteryTier]:
        """Accept mastery words or enum names; unknown values become None."""
        if v is None:
            return None
        return MasteryTier.parse(v)


class PartialChoiceFields(BaseModel):
    """Fields the extractor managed to read from a raw choice string.

    Anything the grammar did not match is left as None; the inferencer
    fills the gaps.
    """
    content: str = ""
    category: Optional[str] = None
    time_estimate: Optional[str] = None
    success_rate: Optional[int] = Field(default=None, ge=0, le=100)
    risk_tier: Optional[RiskTier] = None
    risk_description: Optional[str] = None
    reward_text: Optional[str] = None
    is_nsfw: bool = False
    quest_link: Optional[QuestLink] = None


class CompleteChoiceFields(PartialChoiceFields):
    """Choice fields after inference: rate, tier and reward always present."""
    success_rate: int = Field(..., ge=0, le=100)
    risk_tier: RiskTier
    reward_text: str


class ChoiceRecord(BaseModel):
    """Fully annotated choice consumed by the presentation layer.

    ``original_success_rate`` / ``original_risk_tier`` hold the values before
    category support and skill mastery; the modifiers only ever change the
    working ``success_rate`` / ``risk_tier``.
    """
    model_config = ConfigDict(frozen=True)

    content: str
    time_estimate: Optional[str] = None
    success_rate: int = Field(..., ge=0, le=100)
    original_success_rate: int = Field(..., ge=0, le=100)
    risk_tier: RiskTier
    original_risk_tier: RiskTier
    risk_description: Optional[str] = None
    reward_text: str
    is_nsfw: bool = False
    category: Optional[str] = None
    quest_link: Optional[QuestLink] = None
    support_indicator: str = ""
    support_tooltip: str = ""
    is_skill_boosted: bool = False
    skill_name: Optional[str] = None


class AnnotateChoicesRequest(BaseModel):
    """Request model for POST /choices/annotate.

    The quest log and learned skills are a read-only snapshot of the
    caller's game state; this service keeps no copy between requests.
    """
    choices: List[str] = Field(..., description="Raw choice strings from the generator")
    quests: List[Quest] = Field(default_factory=list)
    skills: List[SkillEntity] = Field(default_factory=list)
    learned_skills: List[str] = Field(
        default_factory=list,
        description="Names of skills the player character has learned"
    )


class AnnotateChoicesResponse(BaseModel):
    """Response model for POST /choices/annotate."""
    choices: List[ChoiceRecord]
    last_selected_category: Optional[str] = None


class SelectCategoryRequest(BaseModel):
    """Request model for POST /choices/select."""
    category: Optional[str] = Field(
        default=None,
        description="Category label of the chosen option, or null to clear"
    )


class SelectCategoryResponse(BaseModel):
    """Response model for POST /choices/select."""
    last_selected_category: Optional[str] = None
    recognized: bool = Field(..., description="Whether the label matched a known category")


class SubmitActionRequest(BaseModel):
    """Request model for POST /actions."""
    action: str = Field(..., min_length=1, max_length=8000)
    is_custom: bool = Field(
        default=False,
        description="True when the player typed a free-text action instead of picking a choice"
    )
    snapshot: Optional[dict] = Field(
        default=None,
        description="Opaque game-state snapshot remembered alongside the action"
    )


class SubmitActionResponse(BaseModel):
    """Response model for POST /actions."""
    accepted: bool
    retried: bool = False
    result: Optional[Any] = None


class RetryActionResponse(BaseModel):
    """Response model for POST /actions/retry."""
    retried: bool


class RetryStatus(BaseModel):
    """Snapshot of a retry coordinator's state."""
    has_last_action: bool
    retry_in_flight: bool
    last_action_age_seconds: Optional[float] = None


class HealthResponse(BaseModel):
    """Health check response model."""
    status: Literal["healthy", "degraded"]
    service: str
    generator_accessible: Optional[bool] = None


class ErrorDetail(BaseModel):
    """Structured error detail."""
    type: str
    message: str
    request_id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error response model wrapping an ErrorDetail."""
    error: ErrorDetail
