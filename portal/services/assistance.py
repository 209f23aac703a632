"""
AI-assisted applicant services: eligibility precheck, document extraction
and the policy assistant.

Every provider call is timed and recorded as an AiRun. A provider failure
never fails the request. Precheck and extraction fall back to a canned
result that asks for manual review, the assistant reports the outage on its
stream, and each fallback leaves an ``ai.fallback`` audit event.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.audit import write_ai_run, write_audit_event
from portal.core.exceptions import ProviderError
from portal.models.application import Application, Document
from portal.models.knowledge import KnowledgeDocument
from portal.services.ai.base import (
    AiProviderBase,
    ContextDocument,
    DocumentExtractionResult,
    EligibilityPrecheckResult,
)
from portal.services.moderation import SafeModerationResult, moderate_artifact_safely
from portal.services.pii import redact_pii

logger = logging.getLogger(__name__)

T = TypeVar("T")

PRECHECK_LABEL = "AI-assisted precheck, not final authority decision."
ASSISTANT_CONTEXT_LIMIT = 8
ASSISTANT_FALLBACK_TEXT = (
    "The assistant is unavailable right now. Your question has been kept for a caseworker."
)


async def _guarded(provider: AiProviderBase, operation: str, call: Awaitable[T]) -> T:
    """Await a provider call with every failure reported as ProviderError"""
    try:
        return await call
    except ProviderError:
        raise
    except Exception as e:
        raise ProviderError(
            f"AI {operation} failed: {type(e).__name__}: {e}",
            code="provider_exception",
            provider=getattr(provider, "name", ""),
        ) from e


def _elapsed_ms(t0: float) -> int:
    return int((time.time() - t0) * 1000)


async def _record_fallback(
    db: AsyncSession,
    error: ProviderError,
    *,
    organization_id: int,
    actor_user_id: int,
    source: str,
    entity_type: str,
    entity_id: Optional[str],
    correlation_id: Optional[str],
) -> None:
    logger.warning("[%s] AI %s unavailable (%s): %s", correlation_id, source, error.code, error.message)
    await write_audit_event(
        db,
        organization_id=organization_id,
        actor_user_id=actor_user_id,
        event_type="ai.fallback",
        entity_type=entity_type,
        entity_id=entity_id,
        metadata={"source": source, "reason": error.code, "provider": error.provider},
        correlation_id=correlation_id,
    )


# ── Eligibility precheck ─────────────────────────────────────────


@dataclass
class PrecheckOutcome:
    result: EligibilityPrecheckResult
    provider_fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "provisionalOutcome": self.result.provisional_outcome,
            "confidence": self.result.confidence,
            "missingEvidence": list(self.result.missing_evidence),
            "nextSteps": list(self.result.next_steps),
            "rationale": self.result.rationale,
            "label": PRECHECK_LABEL,
            "providerFallback": self.provider_fallback,
        }


def _application_payload(application: Application) -> dict:
    return {
        "id": application.id,
        "title": application.title,
        "status": application.status,
        "needsStatement": application.needs_statement,
    }


async def run_eligibility_precheck(
    db: AsyncSession,
    provider: AiProviderBase,
    *,
    organization_id: int,
    actor_user_id: int,
    profile: dict[str, Any],
    application: Optional[Application] = None,
    application_payload: Optional[dict[str, Any]] = None,
    correlation_id: Optional[str] = None,
) -> PrecheckOutcome:
    """
    Advisory precheck. When ``application`` is given its stored fields are
    sent and the result is written back onto it; otherwise the ad-hoc
    payload is checked and nothing but telemetry is stored.
    """
    payload = _application_payload(application) if application else (application_payload or {})

    t0 = time.time()
    try:
        result = await _guarded(provider, "precheck", provider.eligibility_precheck(profile, payload))
        outcome = PrecheckOutcome(result=result)
    except ProviderError as e:
        await _record_fallback(
            db, e,
            organization_id=organization_id,
            actor_user_id=actor_user_id,
            source="eligibility_precheck",
            entity_type="application",
            entity_id=str(application.id) if application else None,
            correlation_id=correlation_id,
        )
        outcome = PrecheckOutcome(
            result=EligibilityPrecheckResult(
                provisional_outcome="uncertain",
                confidence=0.0,
                missing_evidence=["AI provider unavailable during precheck"],
                next_steps=["Caseworker manual review required"],
                rationale="Provider failure fallback",
            ),
            provider_fallback=True,
        )
    latency_ms = _elapsed_ms(t0)

    if application:
        application.eligibility_outcome = {
            "provisionalOutcome": outcome.result.provisional_outcome,
            "rationale": outcome.result.rationale,
        }
        application.eligibility_confidence = outcome.result.confidence
        application.missing_evidence = list(outcome.result.missing_evidence)
        application.next_steps = list(outcome.result.next_steps)
        application.updated_at = datetime.now(timezone.utc)
        await db.flush()

    await write_ai_run(
        db,
        organization_id=organization_id,
        run_type="eligibility_precheck",
        provider=provider.name,
        model_name=provider.model,
        prompt_redacted="eligibility_precheck",
        response_redacted=json.dumps({
            "provisionalOutcome": outcome.result.provisional_outcome,
            "confidence": outcome.result.confidence,
        }),
        latency_ms=latency_ms,
        outcome="provider_error_fallback" if outcome.provider_fallback else "success",
        correlation_id=correlation_id,
    )
    return outcome


# ── Document extraction ──────────────────────────────────────────


@dataclass
class ExtractionOutcome:
    result: DocumentExtractionResult
    moderation: SafeModerationResult
    provider_fallback: bool = False

    def to_dict(self) -> dict:
        item = self.moderation.moderation_item
        return {
            "summary": self.result.summary,
            "extractedFields": dict(self.result.extracted_fields),
            "confidence": self.result.confidence,
            "moderationDecision": self.moderation.decision,
            "moderationItemId": item.id if item else None,
            "providerFallback": self.provider_fallback,
        }


async def run_document_extraction(
    db: AsyncSession,
    provider: AiProviderBase,
    *,
    organization_id: int,
    actor_user_id: int,
    document_text: str,
    document_type: Optional[str] = None,
    document: Optional[Document] = None,
    correlation_id: Optional[str] = None,
) -> ExtractionOutcome:
    """
    Extract fields from a supporting document, then moderate the summary.

    The summary replaces the document's extraction text and its moderation
    decision. Ad-hoc text is moderated under ``adhoc:<user id>``.
    """
    target_id = str(document.id) if document else f"adhoc:{actor_user_id}"

    t0 = time.time()
    provider_fallback = False
    try:
        result = await _guarded(provider, "extraction", provider.extract_document(document_text, document_type))
    except ProviderError as e:
        await _record_fallback(
            db, e,
            organization_id=organization_id,
            actor_user_id=actor_user_id,
            source="document_extract",
            entity_type="document",
            entity_id=target_id,
            correlation_id=correlation_id,
        )
        result = DocumentExtractionResult(
            summary="Extraction pending manual review due to AI provider unavailability.",
            extracted_fields={},
            confidence=0.0,
        )
        provider_fallback = True
    latency_ms = _elapsed_ms(t0)

    moderation = await moderate_artifact_safely(
        db,
        provider,
        organization_id=organization_id,
        created_by_user_id=actor_user_id,
        target_type="document",
        target_id=target_id,
        text=result.summary,
        correlation_id=correlation_id,
    )

    if document:
        document.extraction_text = result.summary
        document.moderation_decision = moderation.decision
        document.updated_at = datetime.now(timezone.utc)
        await db.flush()

    await write_ai_run(
        db,
        organization_id=organization_id,
        run_type="document_extract",
        provider=provider.name,
        model_name=provider.model,
        prompt_redacted="document_extract",
        response_redacted=redact_pii(result.summary),
        latency_ms=latency_ms,
        outcome="provider_error_fallback" if provider_fallback else "success",
        correlation_id=correlation_id,
    )
    return ExtractionOutcome(result=result, moderation=moderation, provider_fallback=provider_fallback)


# ── Policy assistant ─────────────────────────────────────────────


async def load_context_documents(
    db: AsyncSession, organization_id: int, limit: int = ASSISTANT_CONTEXT_LIMIT,
) -> list[ContextDocument]:
    """Most recently updated approved knowledge documents"""
    result = await db.execute(
        select(KnowledgeDocument)
        .where(KnowledgeDocument.organization_id == organization_id)
        .where(KnowledgeDocument.is_approved == True)  # noqa: E712
        .order_by(KnowledgeDocument.updated_at.desc(), KnowledgeDocument.id.desc())
        .limit(limit)
    )
    return [
        ContextDocument(title=d.title, content=d.content, source_url=d.source_url)
        for d in result.scalars().all()
    ]


@dataclass
class AssistantStream:
    """
    An opened assistant reply. ``first_chunk`` has already been received, so
    a provider that fails up front is caught before the response starts.
    """
    first_chunk: str = ""
    rest: Optional[AsyncIterator[str]] = None
    sources: list[str] = field(default_factory=list)
    fallback_reason: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.fallback_reason is not None


async def _first_chunk(chunks: AsyncIterator[str]) -> str:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return ""


async def open_assistant_stream(
    db: AsyncSession,
    provider: AiProviderBase,
    *,
    organization_id: int,
    actor_user_id: int,
    prompt: str,
    prompt_target_id: str,
    moderation_decision: str,
    correlation_id: Optional[str] = None,
) -> AssistantStream:
    """
    Start the assistant reply for an already-moderated prompt and record
    the run. Latency covers the wait for the first chunk.
    """
    context_documents = await load_context_documents(db, organization_id)
    sources = [d.title for d in context_documents]

    t0 = time.time()
    chunks = provider.assistant_reply(prompt, context_documents)
    try:
        first = await _guarded(provider, "assistant", _first_chunk(chunks))
        stream = AssistantStream(first_chunk=first, rest=chunks, sources=sources)
        outcome = "success_pending_review" if moderation_decision == "pending_review" else "success"
    except ProviderError as e:
        await _record_fallback(
            db, e,
            organization_id=organization_id,
            actor_user_id=actor_user_id,
            source="assistant_stream",
            entity_type="assistant_prompt",
            entity_id=prompt_target_id,
            correlation_id=correlation_id,
        )
        stream = AssistantStream(sources=sources, fallback_reason=e.code)
        outcome = "provider_error_fallback"

    await write_ai_run(
        db,
        organization_id=organization_id,
        run_type="assistant_stream",
        provider=provider.name,
        model_name=provider.model,
        prompt_redacted=redact_pii(prompt),
        latency_ms=_elapsed_ms(t0),
        outcome=outcome,
        correlation_id=correlation_id,
    )
    return stream
