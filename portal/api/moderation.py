"""Moderation review and policy management routes"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.config import settings
from portal.core.database import get_db
from portal.core.deps import REVIEWER_ROLES, RequestContext, require_role
from portal.core.response import success
from portal.models.moderation import ModerationEvent, ModerationItem, PolicyVersion
from portal.schemas.moderation import (
    ModerationDecisionRequest, ModerationQueueItem,
    PolicyPublishRequest, PolicyVersionItem,
)
from portal.services.moderation import (
    apply_manual_decision, get_moderation_item, list_moderation_events, list_review_queue,
)
from portal.services.pii import redact_pii
from portal.services.policy import get_active_policy_version, list_policy_versions, publish_policy

router = APIRouter(prefix="/moderation", tags=["Moderation"])

PREVIEW_CHARS = 200


@router.get("/queue")
async def review_queue(
    ctx: RequestContext = Depends(require_role(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Items awaiting manual review"""
    items = await list_review_queue(db, ctx.organization_id, limit=settings.MODERATION_QUEUE_LIMIT)
    data = []
    for item in items:
        row = ModerationQueueItem.model_validate(item)
        row.preview = redact_pii(item.raw_text or "")[:PREVIEW_CHARS]
        data.append(row.model_dump(mode="json"))
    return success(data={"items": data})


@router.get("/items/{moderation_item_id}")
async def moderation_item_detail(
    moderation_item_id: int,
    ctx: RequestContext = Depends(require_role(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """One item with its full event history"""
    item = await get_moderation_item(db, ctx.organization_id, moderation_item_id)
    events = await list_moderation_events(db, item.id)
    return success(data={
        "item": _item_to_dict(item),
        "events": [_event_to_dict(e) for e in events],
    })


@router.post("/decision")
async def manual_decision(
    body: ModerationDecisionRequest,
    ctx: RequestContext = Depends(require_role(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Caseworker override of a moderation decision"""
    item = await apply_manual_decision(
        db,
        organization_id=ctx.organization_id,
        moderation_item_id=body.moderation_item_id,
        decision=body.decision,
        reason=body.reason,
        actor_user_id=ctx.user_id,
        correlation_id=ctx.correlation_id,
    )
    return success(data={"id": item.id, "decision": item.decision}, message="Decision recorded")


@router.get("/policy/current")
async def current_policy(
    ctx: RequestContext = Depends(require_role(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Active policy version (or null)"""
    policy = await get_active_policy_version(db, ctx.organization_id)
    return success(data={"policy": _policy_to_dict(policy) if policy else None})


@router.get("/policy/versions")
async def policy_versions(
    ctx: RequestContext = Depends(require_role(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Policy version history, newest first"""
    versions = await list_policy_versions(db, ctx.organization_id)
    return success(data={"items": [_policy_to_dict(v) for v in versions]})


@router.post("/policy/publish")
async def publish(
    body: PolicyPublishRequest,
    ctx: RequestContext = Depends(require_role(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Publish a new policy version and activate it"""
    version_number = await publish_policy(
        db,
        organization_id=ctx.organization_id,
        user_id=ctx.user_id,
        title=body.title,
        rules=body.rules.model_dump(by_alias=True),
        correlation_id=ctx.correlation_id,
    )
    return success(data={"version_number": version_number}, message="Policy published")


# ── Helpers ──

def _policy_to_dict(policy: PolicyVersion) -> dict:
    return PolicyVersionItem.model_validate(policy).model_dump(mode="json")


def _item_to_dict(item: ModerationItem) -> dict:
    """Moderation item -> dict; raw text is redacted for display"""
    return {
        "id": item.id,
        "target_type": item.target_type,
        "target_id": item.target_id,
        "text": redact_pii(item.raw_text or ""),
        "pii_types": sorted({f.get("type") for f in (item.pii_findings or [])}),
        "model_flags": item.model_flags,
        "rule_flags": item.rule_flags,
        "risk_score": item.risk_score,
        "decision": item.decision,
        "policy_version_id": item.policy_version_id,
        "created_by_user_id": item.created_by_user_id,
        "created_at": item.created_at.isoformat() if item.created_at else None,
        "updated_at": item.updated_at.isoformat() if item.updated_at else None,
    }


def _event_to_dict(event: ModerationEvent) -> dict:
    return {
        "id": event.id,
        "event_type": event.event_type,
        "actor_user_id": event.actor_user_id,
        "reason": event.reason,
        "metadata": event.event_metadata,
        "created_at": event.created_at.isoformat() if event.created_at else None,
    }
