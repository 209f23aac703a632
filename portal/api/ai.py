"""AI assistance routes: eligibility precheck, document extraction, policy assistant"""

import json
import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.messages import load_application_for
from portal.core.database import get_db
from portal.core.deps import REVIEWER_ROLES, RequestContext, get_request_context
from portal.core.exceptions import AuthError, NotFoundError, ProviderError, ValidationError
from portal.core.response import ErrorCode, error, success
from portal.models.application import Document
from portal.schemas.ai import AssistantPromptRequest, DocumentExtractRequest, EligibilityPrecheckRequest
from portal.services.ai import AiProviderBase, get_ai_provider
from portal.services.assistance import (
    ASSISTANT_FALLBACK_TEXT,
    open_assistant_stream,
    run_document_extraction,
    run_eligibility_precheck,
)
from portal.services.moderation import moderate_artifact_safely

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["AI assistance"])


@router.post("/eligibility/precheck")
async def eligibility_precheck(
    body: EligibilityPrecheckRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    provider: AiProviderBase = Depends(get_ai_provider),
):
    """Advisory eligibility precheck; the result is never a final decision"""
    application = None
    if body.application_id is not None:
        application = await load_application_for(db, ctx, body.application_id)

    outcome = await run_eligibility_precheck(
        db,
        provider,
        organization_id=ctx.organization_id,
        actor_user_id=ctx.user_id,
        profile=body.profile,
        application=application,
        application_payload=body.application,
        correlation_id=ctx.correlation_id,
    )
    return success(data=outcome.to_dict())


@router.post("/documents/extract")
async def extract_document(
    body: DocumentExtractRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    provider: AiProviderBase = Depends(get_ai_provider),
):
    """Summarize a stored document or ad-hoc text; the summary is moderated"""
    document = None
    document_text = body.document_text or ""
    if body.document_id is not None:
        document = (await db.execute(
            select(Document)
            .where(Document.id == body.document_id)
            .where(Document.organization_id == ctx.organization_id)
        )).scalar_one_or_none()
        if not document:
            raise NotFoundError("Document not found", code="document_not_found")
        if ctx.role not in REVIEWER_ROLES and document.uploaded_by_user_id != ctx.user_id:
            raise AuthError(ErrorCode.PERMISSION_DENIED, "Not the uploader of this document")
        document_text = document.extraction_text or document_text

    if not document_text:
        raise ValidationError(
            "document_text is required when the document has no extracted text",
            code="document_text_required",
        )

    outcome = await run_document_extraction(
        db,
        provider,
        organization_id=ctx.organization_id,
        actor_user_id=ctx.user_id,
        document_text=document_text,
        document_type=body.document_type,
        document=document,
        correlation_id=ctx.correlation_id,
    )
    return success(data=outcome.to_dict())


@router.post("/assistant/stream")
async def assistant_stream(
    body: AssistantPromptRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    provider: AiProviderBase = Depends(get_ai_provider),
):
    """
    Policy assistant (SSE).

    The prompt is moderated first; a blocked prompt gets a 400 with no
    stream. Events: ``message_start``, ``text_chunk``…, ``message_end``,
    or ``error`` when the provider fails.
    """
    target_id = f"assistant:{ctx.user_id}:{int(time.time() * 1000)}"
    moderation = await moderate_artifact_safely(
        db,
        provider,
        organization_id=ctx.organization_id,
        created_by_user_id=ctx.user_id,
        target_type="assistant_prompt",
        target_id=target_id,
        text=body.prompt,
        correlation_id=ctx.correlation_id,
    )
    if moderation.decision == "blocked":
        # returned, not raised: the blocked item must still be committed
        item = moderation.moderation_item
        return JSONResponse(
            status_code=400,
            content=error(ErrorCode.MODERATION_BLOCKED, "Prompt blocked by moderation policy", {
                "reason": "prompt_blocked",
                "moderation_item_id": item.id if item else None,
            }),
        )

    stream = await open_assistant_stream(
        db,
        provider,
        organization_id=ctx.organization_id,
        actor_user_id=ctx.user_id,
        prompt=body.prompt,
        prompt_target_id=target_id,
        moderation_decision=moderation.decision,
        correlation_id=ctx.correlation_id,
    )
    correlation_id = ctx.correlation_id

    async def event_generator():
        t0 = time.time()

        def _sse(event: str, data: dict) -> str:
            return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"

        yield _sse("message_start", {
            "moderationDecision": moderation.decision,
            "sources": stream.sources,
        })

        if stream.is_fallback:
            yield _sse("error", {"reason": stream.fallback_reason, "text": ASSISTANT_FALLBACK_TEXT})
        else:
            if stream.first_chunk:
                yield _sse("text_chunk", {"text": stream.first_chunk})
            try:
                async for chunk in stream.rest:
                    yield _sse("text_chunk", {"text": chunk})
            except ProviderError as e:
                logger.warning("[%s] assistant stream interrupted (%s): %s", correlation_id, e.code, e.message)
                yield _sse("error", {"reason": e.code, "text": ASSISTANT_FALLBACK_TEXT})
            except Exception as e:
                logger.error("[%s] assistant stream failed: %s", correlation_id, e)
                yield _sse("error", {"reason": "provider_exception", "text": ASSISTANT_FALLBACK_TEXT})

        yield _sse("message_end", {"elapsed": round(time.time() - t0, 2)})

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
