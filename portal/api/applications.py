"""Application submission route; the applicant's free text is moderated on submit"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.messages import load_application_for
from portal.core.database import get_db
from portal.core.deps import RequestContext, get_request_context
from portal.core.exceptions import AuthError, ConflictError, ValidationError
from portal.core.response import ErrorCode, success
from portal.models.application import Document
from portal.schemas.message import ApplicationSubmitRequest
from portal.services.ai import AiProviderBase, get_ai_provider
from portal.services.moderation import moderate_artifact_safely
from portal.services.presentation import moderation_presentation

router = APIRouter(prefix="/applications", tags=["Applications"])

SUBMITTABLE_STATUSES = ("draft", "needs_info")


@router.post("/{application_id}/submit")
async def submit_application(
    application_id: int,
    body: ApplicationSubmitRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    provider: AiProviderBase = Depends(get_ai_provider),
):
    """
    Submit a draft application.

    Needs at least one supporting document. A blocked decision sends the
    application back to ``needs_info``; otherwise it is ``submitted`` and a
    pending review is settled later by a caseworker override.
    """
    application = await load_application_for(db, ctx, application_id)
    if application.applicant_user_id != ctx.user_id:
        raise AuthError(ErrorCode.PERMISSION_DENIED, "Only the applicant can submit this application")
    if application.status not in SUBMITTABLE_STATUSES:
        raise ConflictError(
            f"Application is already {application.status}", code="application_already_submitted",
        )

    document_count = (await db.execute(
        select(func.count(Document.id))
        .where(Document.organization_id == ctx.organization_id)
        .where(Document.application_id == application.id)
    )).scalar() or 0
    if document_count < 1:
        raise ValidationError("At least one supporting document is required", code="documents_required")

    if body.needs_statement is not None:
        application.needs_statement = body.needs_statement

    text = "\n".join(part for part in (application.title, application.needs_statement) if part)
    result = await moderate_artifact_safely(
        db,
        provider,
        organization_id=ctx.organization_id,
        created_by_user_id=ctx.user_id,
        target_type="application_field",
        target_id=str(application.id),
        text=text,
        correlation_id=ctx.correlation_id,
    )

    now = datetime.now(timezone.utc)
    blocked = result.decision == "blocked"
    application.status = "needs_info" if blocked else "submitted"
    application.submitted_at = None if blocked else now
    application.updated_at = now
    await db.flush()

    return success(data={
        "id": application.id,
        "status": application.status,
        "moderation_decision": result.decision,
        "moderation_status": result.status,
        "moderation_item_id": result.moderation_item.id if result.moderation_item else None,
        "presentation": moderation_presentation(result.decision, "Application").to_dict(),
    })
