from uuid import UUID

from fastapi import APIRouter, Depends, BackgroundTasks, HTTPException
from sqlalchemy.orm import Session
from storyguard.db.session import get_db, get_session_factory
from storyguard.core.dependencies import get_moderation_engine
from storyguard.core.exceptions import (
    DatabaseException,
    StoryNotFoundException,
    ValidationException,
    create_http_exception,
)
from storyguard.core.security import rate_limit_dependency
from storyguard.core.logger import logger
from storyguard.moderation.engine import ModerationEngine
from storyguard.schemas.story import StoryCreateRequest, StoryResponse
from storyguard.services.story_service import get_story, publish_story

router = APIRouter(prefix="/api/v1/stories", tags=["stories"])

@router.post("", response_model=StoryResponse, status_code=201)
async def create_story(
    payload: StoryCreateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
    engine: ModerationEngine = Depends(get_moderation_engine),
    _: None = Depends(rate_limit_dependency)
):
    """
    Publish a story.

    The story is stored with the pre-publish verdict in ``mod_status``. Only
    APPROVED stories are visible; they also get a deep review after the
    response is sent.
    """
    try:
        return await publish_story(payload, db, engine, background_tasks, session_factory)

    except ValidationException as e:
        logger.warning(
            "Story validation failed",
            extra={
                "author_id": payload.author_id,
                "error": str(e),
                "field": e.details.get("field", "unknown")
            }
        )
        raise create_http_exception(e, 400)

    except DatabaseException as e:
        logger.error(
            "Story database error",
            extra={
                "author_id": payload.author_id,
                "error": str(e),
                "operation": e.details.get("operation", "unknown")
            },
            exc_info=True
        )
        raise create_http_exception(e, 500)

    except Exception as e:
        logger.error(
            "Unexpected error publishing story",
            extra={"author_id": payload.author_id, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(
            status_code=500,
            detail={
                "error_code": "INTERNAL_SERVER_ERROR",
                "message": "An unexpected error occurred while publishing the story",
                "details": {"error": str(e)}
            }
        )

@router.get("/{story_id}", response_model=StoryResponse, status_code=200)
async def read_story(story_id: UUID, db: Session = Depends(get_db)):
    try:
        return get_story(story_id, db)
    except StoryNotFoundException as e:
        raise create_http_exception(e, 404)
