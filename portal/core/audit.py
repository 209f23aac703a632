"""Audit trail and AI run telemetry helpers"""

from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from portal.models.audit import AiRun, AuditEvent


async def write_audit_event(
    db: AsyncSession,
    *,
    organization_id: int,
    actor_user_id: Optional[int],
    event_type: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    metadata: Optional[Any] = None,
    correlation_id: Optional[str] = None,
) -> AuditEvent:
    """Append one audit event in the caller's transaction"""
    entry = AuditEvent(
        organization_id=organization_id,
        actor_user_id=actor_user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        event_metadata=metadata,
        correlation_id=correlation_id,
    )
    db.add(entry)
    await db.flush()
    return entry


async def write_ai_run(
    db: AsyncSession,
    *,
    organization_id: int,
    run_type: str,
    provider: str,
    model_name: Optional[str],
    outcome: str,
    prompt_redacted: Optional[str] = None,
    response_redacted: Optional[str] = None,
    token_usage: Optional[dict] = None,
    latency_ms: Optional[int] = None,
    correlation_id: Optional[str] = None,
) -> AiRun:
    """Record one provider call; prompt and response must already be redacted"""
    run = AiRun(
        organization_id=organization_id,
        run_type=run_type,
        provider=provider,
        model_name=model_name,
        prompt_redacted=prompt_redacted,
        response_redacted=response_redacted,
        token_usage=token_usage,
        latency_ms=latency_ms,
        outcome=outcome,
        correlation_id=correlation_id,
    )
    db.add(run)
    await db.flush()
    return run
