"""Applicant-side ORM models that carry a denormalized moderation decision"""

from datetime import datetime

from sqlalchemy import String, Text, Integer, Float, DateTime, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from portal.models import Base, JSONType, utcnow
from portal.models.moderation import MODERATION_DECISIONS

APPLICATION_STATUSES = (
    "draft", "submitted", "in_review", "needs_info",
    "eligible", "ineligible", "allocated", "closed",
)
MESSAGE_VISIBILITIES = ("hidden", "visible")


class Application(Base):
    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    applicant_user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        SAEnum(*APPLICATION_STATUSES, name="application_status", native_enum=False, length=32),
        default="draft", nullable=False,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    needs_statement: Mapped[str | None] = mapped_column(Text)
    # advisory AI precheck, never a final eligibility decision
    eligibility_outcome: Mapped[dict | None] = mapped_column(JSONType)
    eligibility_confidence: Mapped[float | None] = mapped_column(Float)
    missing_evidence: Mapped[list | None] = mapped_column(JSONType)
    next_steps: Mapped[list | None] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(Integer, nullable=False)
    sender_user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    recipient_user_id: Mapped[int | None] = mapped_column(Integer)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    moderation_decision: Mapped[str] = mapped_column(
        SAEnum(*MODERATION_DECISIONS, name="moderation_decision", native_enum=False, length=32),
        default="pending_review", nullable=False,
    )
    visibility: Mapped[str] = mapped_column(
        SAEnum(*MESSAGE_VISIBILITIES, name="message_visibility", native_enum=False, length=16),
        default="hidden", nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    application_id: Mapped[int | None] = mapped_column(Integer)
    uploaded_by_user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(1024), nullable=False)  # issued by the storage service
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    extraction_text: Mapped[str | None] = mapped_column(Text)
    moderation_decision: Mapped[str] = mapped_column(
        SAEnum(*MODERATION_DECISIONS, name="moderation_decision", native_enum=False, length=32),
        default="pending_review", nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
