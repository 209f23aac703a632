"""Document metadata routes; extracted text is moderated on attach"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.messages import load_application_for
from portal.core.database import get_db
from portal.core.deps import RequestContext, get_request_context
from portal.core.response import success
from portal.models.application import Document
from portal.schemas.message import DocumentAttachRequest
from portal.services.ai import AiProviderBase, get_ai_provider
from portal.services.moderation import moderate_artifact_safely
from portal.services.presentation import moderation_presentation

router = APIRouter(prefix="/documents", tags=["Documents"])


@router.post("")
async def attach_document(
    body: DocumentAttachRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    provider: AiProviderBase = Depends(get_ai_provider),
):
    """Register an uploaded file; the object itself lives in external storage"""
    if body.application_id is not None:
        await load_application_for(db, ctx, body.application_id)

    document = Document(
        organization_id=ctx.organization_id,
        application_id=body.application_id,
        uploaded_by_user_id=ctx.user_id,
        file_name=body.file_name,
        mime_type=body.mime_type,
        storage_key=body.storage_key,
        file_size=body.file_size,
        extraction_text=body.extracted_text,
        moderation_decision="pending_review",
    )
    db.add(document)
    await db.flush()

    # file name is moderated too when no text could be extracted
    text = body.extracted_text or body.file_name
    result = await moderate_artifact_safely(
        db,
        provider,
        organization_id=ctx.organization_id,
        created_by_user_id=ctx.user_id,
        target_type="document",
        target_id=str(document.id),
        text=text,
        correlation_id=ctx.correlation_id,
    )
    document.moderation_decision = result.decision
    await db.flush()

    return success(data={
        "id": document.id,
        "moderation_decision": document.moderation_decision,
        "moderation_status": result.status,
        "moderation_item_id": result.moderation_item.id if result.moderation_item else None,
        "presentation": moderation_presentation(result.decision, "Document").to_dict(),
    })
