"""Message, document and application submission schemas"""

from typing import Optional
from pydantic import BaseModel, Field


class MessageSendRequest(BaseModel):
    application_id: int = Field(..., gt=0)
    recipient_user_id: Optional[int] = None
    body: str = Field(..., min_length=1, max_length=10000)


class DocumentAttachRequest(BaseModel):
    application_id: Optional[int] = None
    file_name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=1, max_length=100)
    storage_key: str = Field(..., min_length=1, max_length=1024)
    file_size: int = Field(..., ge=0)
    extracted_text: Optional[str] = Field(None, max_length=200000)


class ApplicationSubmitRequest(BaseModel):
    needs_statement: Optional[str] = Field(None, max_length=10000)
