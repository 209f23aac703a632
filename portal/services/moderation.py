"""
Moderation decision engine.

Combines three signals into one auditable decision per artifact:
  - PII findings (local pattern scan)
  - policy rule evaluation against the organization's active version
  - AI provider category flags / scores

and persists a ModerationItem + decision_created ModerationEvent + audit
event. Human reviewers change the decision later through
``apply_manual_decision``, which appends a manual_decision event and updates
the owning message / document / application.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.audit import write_audit_event
from portal.core.exceptions import NotFoundError, ProviderError, ValidationError
from portal.models.application import Application, Document, Message
from portal.models.moderation import (
    MODERATION_DECISIONS,
    MODERATION_TARGET_TYPES,
    ModerationEvent,
    ModerationItem,
    PolicyVersion,
)
from portal.services.ai.base import AiModerationResult, AiProviderBase
from portal.services.pii import scan_pii
from portal.services.policy import PolicyEvaluation, evaluate_policy_rules, get_active_policy_version

logger = logging.getLogger(__name__)

# Compared after normalize_category(): "self-harm", "self_harm" and
# "sexual/minors" all collapse onto one spelling.
SEVERE_CATEGORIES = frozenset({"violence", "selfharm", "hate", "harassment", "sexualminors"})

REVIEW_THRESHOLD = 0.5
MIN_REASON_LENGTH = 2

_DECISION_REASONS = {
    "approved": "auto_approved",
    "blocked": "blocked_by_policy_or_severity",
    "pending_review": "queued_for_review",
}


def normalize_category(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", str(name).lower())


def _score(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if number == number else 0.0  # NaN -> 0


# ── Scoring ───────────────────────────────────────────────────────


def max_model_score(ai_result: AiModerationResult) -> float:
    return max([0.0, *(_score(v) for v in (ai_result.category_scores or {}).values())])


def severity_triggered(ai_result: AiModerationResult) -> bool:
    return any(
        bool(flagged) and normalize_category(name) in SEVERE_CATEGORIES
        for name, flagged in (ai_result.categories or {}).items()
    )


def compute_risk_score(model_score: float, ai_flagged: bool, pii_count: int, warning_count: int) -> float:
    score = (
        model_score * 0.6
        + (0.2 if ai_flagged else 0.0)
        + min(0.15, pii_count * 0.03)
        + min(0.2, warning_count * 0.05)
    )
    return max(0.0, min(1.0, score))


def decide_moderation(
    *,
    hard_blocks: list[str],
    ai_flagged: bool,
    severity: bool,
    risk_score: float,
) -> str:
    if hard_blocks or severity:
        return "blocked"
    if ai_flagged or risk_score >= REVIEW_THRESHOLD:
        return "pending_review"
    return "approved"


# ── Automatic evaluation ─────────────────────────────────────────


@dataclass
class ModerationOutcome:
    decision: str
    risk_score: float
    moderation_item: ModerationItem


async def _call_provider(provider: AiProviderBase, text: str) -> AiModerationResult:
    """Provider call with every failure reported as ProviderError"""
    try:
        return await provider.moderate_text(text)
    except ProviderError:
        raise
    except Exception as e:
        raise ProviderError(
            f"AI moderation failed: {type(e).__name__}: {e}",
            code="provider_exception",
            provider=getattr(provider, "name", ""),
        ) from e


async def _record_item(
    db: AsyncSession,
    *,
    organization_id: int,
    created_by_user_id: Optional[int],
    target_type: str,
    target_id: str,
    text: str,
    pii_findings: list,
    policy: Optional[PolicyVersion],
    policy_result: PolicyEvaluation,
    model_flags: Optional[dict],
    risk_score: float,
    decision: str,
    reason: str,
    event_metadata: dict,
) -> ModerationItem:
    """Insert the item and its decision_created event"""
    item = ModerationItem(
        organization_id=organization_id,
        created_by_user_id=created_by_user_id,
        target_type=target_type,
        target_id=str(target_id),
        raw_text=text,
        pii_findings=[f.to_dict() for f in pii_findings],
        model_flags=model_flags,
        rule_flags=policy_result.to_dict(),
        risk_score=risk_score,
        decision=decision,
        policy_version_id=policy.id if policy else None,
    )
    db.add(item)
    await db.flush()

    db.add(ModerationEvent(
        organization_id=organization_id,
        moderation_item_id=item.id,
        actor_user_id=created_by_user_id,
        event_type="decision_created",
        reason=reason,
        event_metadata=event_metadata,
    ))
    await db.flush()
    return item


async def moderate_artifact(
    db: AsyncSession,
    provider: AiProviderBase,
    *,
    organization_id: int,
    created_by_user_id: Optional[int],
    target_type: str,
    target_id: str,
    text: str,
    correlation_id: Optional[str] = None,
) -> ModerationOutcome:
    """
    Evaluate one artifact and persist the decision.

    Raises ProviderError when the AI call fails; nothing is written in that
    case. Use ``moderate_artifact_safely`` at call sites that need a fallback.
    """
    if target_type not in MODERATION_TARGET_TYPES:
        raise ValidationError(f"Unknown moderation target type: {target_type}")
    correlation_id = correlation_id or str(uuid4())
    text = text or ""

    pii_findings = scan_pii(text)

    policy = await get_active_policy_version(db, organization_id)
    policy_result = evaluate_policy_rules(text, policy.rules if policy else {})

    ai_result = await _call_provider(provider, text)

    severity = severity_triggered(ai_result)
    risk_score = compute_risk_score(
        max_model_score(ai_result), ai_result.flagged, len(pii_findings), len(policy_result.warnings),
    )
    decision = decide_moderation(
        hard_blocks=policy_result.hard_blocks,
        ai_flagged=ai_result.flagged,
        severity=severity,
        risk_score=risk_score,
    )

    item = await _record_item(
        db,
        organization_id=organization_id,
        created_by_user_id=created_by_user_id,
        target_type=target_type,
        target_id=target_id,
        text=text,
        pii_findings=pii_findings,
        policy=policy,
        policy_result=policy_result,
        model_flags=ai_result.to_dict(),
        risk_score=risk_score,
        decision=decision,
        reason=_DECISION_REASONS[decision],
        event_metadata={"riskScore": risk_score},
    )

    await write_audit_event(
        db,
        organization_id=organization_id,
        actor_user_id=created_by_user_id,
        event_type="moderation.evaluated",
        entity_type=target_type,
        entity_id=str(target_id),
        metadata={"decision": decision, "riskScore": risk_score},
        correlation_id=correlation_id,
    )

    logger.info(
        "[%s] moderation %s:%s -> %s (risk=%.3f, hard_blocks=%d, pii=%d)",
        correlation_id, target_type, target_id, decision, risk_score,
        len(policy_result.hard_blocks), len(pii_findings),
    )
    return ModerationOutcome(decision=decision, risk_score=risk_score, moderation_item=item)


@dataclass
class SafeModerationResult:
    """Tagged result: ``success`` carries the outcome, ``fallback`` carries the reason"""
    status: str  # success | fallback
    decision: str
    risk_score: Optional[float] = None
    moderation_item: Optional[ModerationItem] = None
    reason: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.status == "fallback"


async def moderate_artifact_safely(
    db: AsyncSession,
    provider: AiProviderBase,
    *,
    organization_id: int,
    created_by_user_id: Optional[int],
    target_type: str,
    target_id: str,
    text: str,
    correlation_id: Optional[str] = None,
) -> SafeModerationResult:
    """
    ``moderate_artifact`` with the provider-outage policy applied in one place.

    An AI failure yields a ``pending_review`` item scored from the local
    signals only, so it lands in the review queue, plus an ``ai.fallback``
    audit event. Errors other than ProviderError still propagate.
    """
    correlation_id = correlation_id or str(uuid4())
    try:
        outcome = await moderate_artifact(
            db,
            provider,
            organization_id=organization_id,
            created_by_user_id=created_by_user_id,
            target_type=target_type,
            target_id=target_id,
            text=text,
            correlation_id=correlation_id,
        )
    except ProviderError as e:
        logger.warning(
            "[%s] AI moderation unavailable for %s:%s, queueing for review: %s",
            correlation_id, target_type, target_id, e.message,
        )
        text = text or ""
        pii_findings = scan_pii(text)
        policy = await get_active_policy_version(db, organization_id)
        policy_result = evaluate_policy_rules(text, policy.rules if policy else {})
        risk_score = compute_risk_score(0.0, False, len(pii_findings), len(policy_result.warnings))
        item = await _record_item(
            db,
            organization_id=organization_id,
            created_by_user_id=created_by_user_id,
            target_type=target_type,
            target_id=target_id,
            text=text,
            pii_findings=pii_findings,
            policy=policy,
            policy_result=policy_result,
            model_flags=None,
            risk_score=risk_score,
            decision="pending_review",
            reason="ai_fallback",
            event_metadata={"riskScore": risk_score, "fallbackReason": e.code},
        )
        await write_audit_event(
            db,
            organization_id=organization_id,
            actor_user_id=created_by_user_id,
            event_type="ai.fallback",
            entity_type=target_type,
            entity_id=str(target_id),
            metadata={
                "targetType": target_type,
                "fallbackDecision": "pending_review",
                "reason": e.code,
                "provider": e.provider,
            },
            correlation_id=correlation_id,
        )
        return SafeModerationResult(
            status="fallback",
            decision="pending_review",
            risk_score=risk_score,
            moderation_item=item,
            reason=e.code,
        )

    return SafeModerationResult(
        status="success",
        decision=outcome.decision,
        risk_score=outcome.risk_score,
        moderation_item=outcome.moderation_item,
    )


# ── Review queue / lookups ───────────────────────────────────────


async def get_moderation_item(db: AsyncSession, organization_id: int, moderation_item_id: int) -> ModerationItem:
    result = await db.execute(
        select(ModerationItem)
        .where(ModerationItem.organization_id == organization_id)
        .where(ModerationItem.id == moderation_item_id)
    )
    item = result.scalar_one_or_none()
    if not item:
        raise NotFoundError("Moderation item not found", code="moderation_item_not_found")
    return item


async def list_moderation_events(db: AsyncSession, moderation_item_id: int) -> list[ModerationEvent]:
    result = await db.execute(
        select(ModerationEvent)
        .where(ModerationEvent.moderation_item_id == moderation_item_id)
        .order_by(ModerationEvent.created_at.asc(), ModerationEvent.id.asc())
    )
    return list(result.scalars().all())


async def list_review_queue(db: AsyncSession, organization_id: int, limit: int = 200) -> list[ModerationItem]:
    """pending_review items for the organization, newest first"""
    result = await db.execute(
        select(ModerationItem)
        .where(ModerationItem.organization_id == organization_id)
        .where(ModerationItem.decision == "pending_review")
        .order_by(ModerationItem.created_at.desc(), ModerationItem.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


# ── Manual override ──────────────────────────────────────────────


def _numeric_target(item: ModerationItem) -> Optional[int]:
    try:
        return int(item.target_id)
    except (TypeError, ValueError):
        logger.debug("Target id %r of moderation item %s is not numeric, skipping propagation",
                     item.target_id, item.id)
        return None


async def _propagate_to_owner(db: AsyncSession, item: ModerationItem, decision: str, now: datetime) -> None:
    """Keep the owning entity's denormalized moderation state in step with the item"""
    target_id = _numeric_target(item)
    if target_id is None:
        return

    if item.target_type == "message":
        await db.execute(
            update(Message)
            .where(Message.id == target_id)
            .where(Message.organization_id == item.organization_id)
            .values(
                moderation_decision=decision,
                visibility="visible" if decision == "approved" else "hidden",
                updated_at=now,
            )
        )
    elif item.target_type == "document":
        await db.execute(
            update(Document)
            .where(Document.id == target_id)
            .where(Document.organization_id == item.organization_id)
            .values(moderation_decision=decision, updated_at=now)
        )
    elif item.target_type == "application_field":
        # pending_review intentionally leaves the application status alone
        status = {"approved": "in_review", "blocked": "needs_info"}.get(decision)
        if status is None:
            return
        await db.execute(
            update(Application)
            .where(Application.id == target_id)
            .where(Application.organization_id == item.organization_id)
            .values(status=status, updated_at=now)
        )


async def apply_manual_decision(
    db: AsyncSession,
    *,
    organization_id: int,
    moderation_item_id: int,
    decision: str,
    reason: str,
    actor_user_id: int,
    correlation_id: Optional[str] = None,
) -> ModerationItem:
    """
    Human override of a moderation decision.

    Updates the item, appends a manual_decision event and propagates the new
    decision to the owning entity, all in the caller's transaction.
    """
    if decision not in MODERATION_DECISIONS:
        raise ValidationError(f"Invalid moderation decision: {decision}")
    reason = (reason or "").strip()
    if len(reason) < MIN_REASON_LENGTH:
        raise ValidationError(f"A reason of at least {MIN_REASON_LENGTH} characters is required")

    item = await get_moderation_item(db, organization_id, moderation_item_id)
    previous_decision = item.decision
    now = datetime.now(timezone.utc)

    item.decision = decision
    item.updated_at = now
    db.add(ModerationEvent(
        organization_id=organization_id,
        moderation_item_id=item.id,
        actor_user_id=actor_user_id,
        event_type="manual_decision",
        reason=reason,
        event_metadata={"previousDecision": previous_decision, "newDecision": decision},
    ))
    await db.flush()

    await _propagate_to_owner(db, item, decision, now)

    await write_audit_event(
        db,
        organization_id=organization_id,
        actor_user_id=actor_user_id,
        event_type="moderation.override",
        entity_type="moderation_item",
        entity_id=str(item.id),
        metadata={"decision": decision, "reason": reason},
        correlation_id=correlation_id,
    )
    logger.info("Moderation item %s overridden %s -> %s by user %s",
                item.id, previous_decision, decision, actor_user_id)
    return item
