"""AI assistance request schemas"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class EligibilityPrecheckRequest(BaseModel):
    """Either an application id, or an ad-hoc profile/application payload"""
    application_id: Optional[int] = Field(None, gt=0)
    profile: Dict[str, Any] = Field(default_factory=dict)
    application: Dict[str, Any] = Field(default_factory=dict)


class DocumentExtractRequest(BaseModel):
    document_id: Optional[int] = Field(None, gt=0)
    document_text: Optional[str] = Field(None, max_length=200000)
    document_type: Optional[str] = Field(None, max_length=100)


class AssistantPromptRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=4000)
