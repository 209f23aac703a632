"""Audit event routes"""

import csv
import io
import json
from datetime import date, datetime, time, timezone

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.database import get_db
from portal.core.deps import REVIEWER_ROLES, RequestContext, require_role
from portal.core.response import success
from portal.models.audit import AuditEvent

router = APIRouter(prefix="/audit", tags=["AuditEvents"])

MAX_EXPORT_ROWS = 10000


@router.get("/events")
async def list_audit_events(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    event_type: str = Query(None, description="Prefix match, e.g. moderation."),
    entity_type: str = Query(None),
    entity_id: str = Query(None),
    correlation_id: str = Query(None),
    start_date: date = Query(None, description="YYYY-MM-DD"),
    end_date: date = Query(None, description="YYYY-MM-DD"),
    ctx: RequestContext = Depends(require_role(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Audit events of the caller's organization"""
    query = _build_audit_query(
        ctx.organization_id, event_type, entity_type, entity_id, correlation_id, start_date, end_date,
    )

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
    query = query.offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    events = result.scalars().all()

    items = [_event_to_dict(e) for e in events]
    return success(data={"items": items, "total": total, "page": page, "page_size": page_size})


@router.get("/events/export")
async def export_audit_events(
    event_type: str = Query(None),
    entity_type: str = Query(None),
    entity_id: str = Query(None),
    correlation_id: str = Query(None),
    start_date: date = Query(None),
    end_date: date = Query(None),
    ctx: RequestContext = Depends(require_role(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Export audit events as CSV"""
    query = _build_audit_query(
        ctx.organization_id, event_type, entity_type, entity_id, correlation_id, start_date, end_date,
    )
    query = query.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(MAX_EXPORT_ROWS)
    result = await db.execute(query)
    events = result.scalars().all()

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["time", "actor_user_id", "event_type", "entity_type", "entity_id", "correlation_id", "metadata"])
    for event in events:
        writer.writerow([
            event.created_at.strftime("%Y-%m-%d %H:%M:%S") if event.created_at else "",
            event.actor_user_id if event.actor_user_id is not None else "",
            event.event_type,
            event.entity_type or "",
            event.entity_id or "",
            event.correlation_id or "",
            json.dumps(event.event_metadata, sort_keys=True) if event.event_metadata else "",
        ])

    csv_bytes = output.getvalue().encode("utf-8-sig")  # BOM so spreadsheet tools detect UTF-8
    return StreamingResponse(
        io.BytesIO(csv_bytes),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": "attachment; filename=audit_events.csv"},
    )


# ── Helpers ──

def _build_audit_query(organization_id, event_type, entity_type, entity_id, correlation_id, start_date, end_date):
    """Filtered audit query shared by list and export"""
    query = select(AuditEvent).where(AuditEvent.organization_id == organization_id)

    if event_type:
        query = query.where(AuditEvent.event_type.startswith(event_type))
    if entity_type:
        query = query.where(AuditEvent.entity_type == entity_type)
    if entity_id:
        query = query.where(AuditEvent.entity_id == entity_id)
    if correlation_id:
        query = query.where(AuditEvent.correlation_id == correlation_id)
    if start_date:
        query = query.where(AuditEvent.created_at >= datetime.combine(start_date, time.min, tzinfo=timezone.utc))
    if end_date:
        query = query.where(AuditEvent.created_at <= datetime.combine(end_date, time.max, tzinfo=timezone.utc))

    return query


def _event_to_dict(event: AuditEvent) -> dict:
    return {
        "id": event.id,
        "actor_user_id": event.actor_user_id,
        "event_type": event.event_type,
        "entity_type": event.entity_type,
        "entity_id": event.entity_id,
        "metadata": event.event_metadata,
        "correlation_id": event.correlation_id,
        "created_at": event.created_at.isoformat() if event.created_at else None,
    }
