"""Moderation and policy Pydantic schemas"""

from typing import List, Literal, Optional
from datetime import datetime
from pydantic import BaseModel, Field

DecisionLiteral = Literal["approved", "pending_review", "blocked"]


class PolicyRuleSet(BaseModel):
    """Stored rule set; JSON keys are camelCase"""
    blocked_phrases: List[str] = Field(default_factory=list, alias="blockedPhrases")
    watch_phrases: List[str] = Field(default_factory=list, alias="watchPhrases")
    blocked_regex: List[str] = Field(default_factory=list, alias="blockedRegex")

    model_config = {"populate_by_name": True, "extra": "forbid"}


class PolicyPublishRequest(BaseModel):
    title: str = Field(..., min_length=3, max_length=255)
    rules: PolicyRuleSet


class PolicyVersionItem(BaseModel):
    id: int
    version_number: int
    title: str
    rules: dict
    is_active: bool
    published_by_user_id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class ModerationDecisionRequest(BaseModel):
    moderation_item_id: int = Field(..., gt=0)
    decision: DecisionLiteral
    reason: str = Field(..., min_length=2, max_length=2000)


class ModerationQueueItem(BaseModel):
    id: int
    target_type: str
    target_id: str
    decision: str
    risk_score: float
    created_at: datetime
    preview: Optional[str] = None  # PII-redacted excerpt

    model_config = {"from_attributes": True}
