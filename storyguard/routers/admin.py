from uuid import UUID

from fastapi import APIRouter, Depends, BackgroundTasks, Query
from sqlalchemy.orm import Session
from storyguard.db.session import get_db, get_session_factory
from storyguard.core.exceptions import DatabaseException, StoryNotFoundException, create_http_exception
from storyguard.core.security import require_admin_key
from storyguard.core.logger import logger
from storyguard.schemas.story import ManualDecisionRequest, ModerationQueueResponse, StoryResponse
from storyguard.services.story_service import apply_manual_decision, list_moderation_queue

router = APIRouter(
    prefix="/api/v1/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_key)]
)

@router.get("/queue", response_model=ModerationQueueResponse, status_code=200)
async def moderation_queue(
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db)
):
    """Stories waiting for a moderator, oldest first."""
    items = list_moderation_queue(db, limit=limit)
    return ModerationQueueResponse(
        items=[StoryResponse.model_validate(story) for story in items],
        count=len(items)
    )

@router.post("/stories/{story_id}/decision", response_model=StoryResponse, status_code=200)
async def manual_decision(
    story_id: UUID,
    payload: ManualDecisionRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory)
):
    """
    Approve, shadow or reject a story.

    Unlike the deep scan, a moderator may also loosen a decision.
    """
    try:
        return apply_manual_decision(
            story_id,
            payload.decision,
            payload.reviewer,
            payload.note,
            db,
            background_tasks,
            session_factory,
        )
    except StoryNotFoundException as e:
        logger.warning("Manual decision for unknown story", extra={"story_id": str(story_id)})
        raise create_http_exception(e, 404)
    except DatabaseException as e:
        raise create_http_exception(e, 500)
