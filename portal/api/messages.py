"""Application messaging routes; every message is moderated before delivery"""

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.database import get_db
from portal.core.deps import REVIEWER_ROLES, RequestContext, get_request_context
from portal.core.exceptions import AuthError, NotFoundError
from portal.core.response import ErrorCode, success
from portal.models.application import Application, Message
from portal.schemas.message import MessageSendRequest
from portal.services.ai import AiProviderBase, get_ai_provider
from portal.services.moderation import moderate_artifact_safely
from portal.services.presentation import moderation_presentation

router = APIRouter(prefix="/messages", tags=["Messages"])


async def load_application_for(db: AsyncSession, ctx: RequestContext, application_id: int) -> Application:
    """Application in the caller's organization; applicants may only reach their own"""
    result = await db.execute(
        select(Application)
        .where(Application.id == application_id)
        .where(Application.organization_id == ctx.organization_id)
    )
    application = result.scalar_one_or_none()
    if not application:
        raise NotFoundError("Application not found", code="application_not_found")
    if ctx.role not in REVIEWER_ROLES and application.applicant_user_id != ctx.user_id:
        raise AuthError(ErrorCode.PERMISSION_DENIED, "Not a participant of this application")
    return application


@router.post("")
async def send_message(
    body: MessageSendRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    provider: AiProviderBase = Depends(get_ai_provider),
):
    """Send a message; it stays hidden unless moderation approves it"""
    application = await load_application_for(db, ctx, body.application_id)

    message = Message(
        organization_id=ctx.organization_id,
        application_id=application.id,
        sender_user_id=ctx.user_id,
        recipient_user_id=body.recipient_user_id,
        body=body.body,
        moderation_decision="pending_review",
        visibility="hidden",
    )
    db.add(message)
    await db.flush()

    result = await moderate_artifact_safely(
        db,
        provider,
        organization_id=ctx.organization_id,
        created_by_user_id=ctx.user_id,
        target_type="message",
        target_id=str(message.id),
        text=body.body,
        correlation_id=ctx.correlation_id,
    )
    message.moderation_decision = result.decision
    message.visibility = "visible" if result.decision == "approved" else "hidden"
    await db.flush()

    presentation = moderation_presentation(result.decision, "Message")
    return success(data={
        "id": message.id,
        "moderation_decision": message.moderation_decision,
        "visibility": message.visibility,
        "moderation_status": result.status,
        "moderation_item_id": result.moderation_item.id if result.moderation_item else None,
        "presentation": presentation.to_dict(),
    })
