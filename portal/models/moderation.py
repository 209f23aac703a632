"""Moderation ORM models: policy versions, moderation items, moderation events"""

from datetime import datetime

from sqlalchemy import (
    String, Boolean, Text, Integer, Float, DateTime, ForeignKey,
    Index, UniqueConstraint, Enum as SAEnum, text,
)
from sqlalchemy.orm import Mapped, mapped_column

from portal.models import Base, JSONType, utcnow

MODERATION_DECISIONS = ("approved", "pending_review", "blocked")
MODERATION_TARGET_TYPES = ("message", "document", "application_field", "assistant_prompt")
MODERATION_EVENT_TYPES = ("decision_created", "manual_decision")


# ---- Policy version table ----
class PolicyVersion(Base):
    __tablename__ = "policy_versions"
    __table_args__ = (
        UniqueConstraint("organization_id", "version_number", name="uq_policy_versions_org_version"),
        # at most one active rule set per organization
        Index(
            "uq_policy_versions_active_org",
            "organization_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    rules: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    published_by_user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ---- Moderation item table (one row per evaluated artifact) ----
class ModerationItem(Base):
    __tablename__ = "moderation_items"
    __table_args__ = (
        Index("ix_moderation_items_org_decision", "organization_id", "decision"),
        Index("ix_moderation_items_target", "target_type", "target_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by_user_id: Mapped[int | None] = mapped_column(Integer)
    target_type: Mapped[str] = mapped_column(
        SAEnum(*MODERATION_TARGET_TYPES, name="moderation_target_type", native_enum=False, length=32),
        nullable=False,
    )
    target_id: Mapped[str] = mapped_column(String(255), nullable=False)
    raw_text: Mapped[str | None] = mapped_column(Text)
    pii_findings: Mapped[list | None] = mapped_column(JSONType)
    model_flags: Mapped[dict | None] = mapped_column(JSONType)
    rule_flags: Mapped[dict | None] = mapped_column(JSONType)
    risk_score: Mapped[float] = mapped_column(Float, nullable=False)
    decision: Mapped[str] = mapped_column(
        SAEnum(*MODERATION_DECISIONS, name="moderation_decision", native_enum=False, length=32),
        nullable=False,
    )
    policy_version_id: Mapped[int | None] = mapped_column(ForeignKey("policy_versions.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ---- Moderation event table (append-only) ----
class ModerationEvent(Base):
    __tablename__ = "moderation_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False)
    moderation_item_id: Mapped[int] = mapped_column(
        ForeignKey("moderation_items.id"), nullable=False, index=True,
    )
    actor_user_id: Mapped[int | None] = mapped_column(Integer)  # None = system
    event_type: Mapped[str] = mapped_column(
        SAEnum(*MODERATION_EVENT_TYPES, name="moderation_event_type", native_enum=False, length=32),
        nullable=False,
    )
    reason: Mapped[str | None] = mapped_column(Text)
    event_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
