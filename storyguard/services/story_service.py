import asyncio
import time
from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from storyguard.models.story import Story, STORY_TTL
from storyguard.models.moderation_log import ModerationLog
from storyguard.models.notification_log import NotificationLog  # registers the mapper
from storyguard.moderation.engine import ModerationEngine
from storyguard.moderation.models import (
    ContentType,
    Decision,
    ModerationEvent,
    ModerationResult,
    Phase,
)
from storyguard.moderation.policy import decision_event, is_more_restrictive
from storyguard.schemas.story import StoryCreateRequest
from storyguard.services.notification_service import dispatch_moderation_event
from storyguard.core.logger import logger
from storyguard.core.exceptions import (
    DatabaseException,
    StoryNotFoundException,
    ValidationException,
)
from storyguard.core.security import (
    validate_text_content,
    validate_media_ref,
    sanitize_input,
)


def validate_story_request(request: StoryCreateRequest) -> Optional[str]:
    """
    Check the payload and return the sanitized text.

    Missing thumbnails are not a validation error: the moderation engine
    routes those stories to manual review.

    Raises:
        ValidationException: If a field is malformed
    """
    text = None
    if request.text is not None:
        text = sanitize_input(request.text)
        is_valid, error_msg = validate_text_content(text)
        if not is_valid:
            raise ValidationException(error_msg or "Invalid text", field="text")

    if request.content_type == ContentType.TEXT and not text:
        raise ValidationException("Text stories need text", field="text")

    if request.content_type != ContentType.TEXT and not request.media_ref:
        raise ValidationException("Media stories need a media reference", field="media_ref")

    for field in ("media_ref", "thumbnail_ref"):
        ref = getattr(request, field)
        if ref is None:
            continue
        is_valid, error_msg = validate_media_ref(ref)
        if not is_valid:
            raise ValidationException(error_msg or "Invalid media reference", field=field)

    return text


def _log_step(
    db: Session,
    story: Story,
    phase: Phase,
    previous: Optional[Decision],
    computed: ModerationResult,
    reviewer: Optional[str] = None
) -> None:
    db.add(ModerationLog(
        story_id=story.id,
        phase=phase,
        previous_decision=previous,
        decision=story.mod_status,
        computed_decision=computed.decision,
        risk=computed.risk,
        tags=list(computed.tags),
        confidence=computed.confidence,
        reason=computed.reason,
        reviewer=reviewer,
    ))


def _schedule_event(
    background_tasks: BackgroundTasks,
    event: Optional[ModerationEvent],
    session_factory: Callable[[], Session]
) -> None:
    if event is None:
        return
    logger.info("Scheduling moderation notification", extra=event.log_extra())
    background_tasks.add_task(dispatch_moderation_event, event, session_factory)


async def publish_story(
    request: StoryCreateRequest,
    db: Session,
    engine: ModerationEngine,
    background_tasks: BackgroundTasks,
    session_factory: Callable[[], Session]
) -> Story:
    """
    Create a story gated by the pre-publish check.

    Stories that go live are queued for a deep review once the response is
    sent.

    Raises:
        ValidationException: If input validation fails
        DatabaseException: If the story cannot be stored
    """
    logger.info(
        f"Publishing {request.content_type.value} story",
        extra={"author_id": request.author_id}
    )

    text = validate_story_request(request)
    metadata = request.metadata
    story = Story(
        author_id=request.author_id,
        author_email=request.author_email,
        content_type=request.content_type,
        visibility=request.visibility,
        text=text,
        media_ref=request.media_ref,
        thumbnail_ref=request.thumbnail_ref,
        duration_seconds=metadata.duration_seconds if metadata else None,
        size_bytes=metadata.size_bytes if metadata else None,
        width=metadata.dimensions.width if metadata and metadata.dimensions else None,
        height=metadata.dimensions.height if metadata and metadata.dimensions else None,
    )
    story.created_at = datetime.utcnow()
    story.expires_at = story.created_at + STORY_TTL

    started = time.perf_counter()
    result = await engine.evaluate_sync(story.to_moderation_input())
    story.mod_latency_ms = (time.perf_counter() - started) * 1000
    story.apply_verdict(result)

    try:
        db.add(story)
        db.flush()
        _log_step(db, story, Phase.SYNC, None, result)
        db.commit()
        db.refresh(story)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "Database error storing story",
            extra={"author_id": request.author_id, "error": str(e)},
            exc_info=True
        )
        raise DatabaseException(f"Failed to store story: {str(e)}", operation="publish_story")

    logger.info(
        "Story moderated before publish",
        extra={
            "story_id": str(story.id),
            "author_id": story.author_id,
            "decision": result.decision.value,
            "phase": Phase.SYNC.value,
            "latency_ms": story.mod_latency_ms
        }
    )

    _schedule_event(background_tasks, decision_event(story, None, result, Phase.SYNC), session_factory)

    if story.mod_status == Decision.APPROVED:
        background_tasks.add_task(run_deep_review, story.id, engine, session_factory)

    return story


async def run_deep_review(
    story_id: UUID,
    engine: ModerationEngine,
    session_factory: Callable[[], Session]
) -> Optional[ModerationResult]:
    """
    Deep-scan a live story and tighten its decision if warranted.

    The stored decision changes only when the reconciled verdict is stricter;
    risk and tags always take the deep values. Returns the reconciled verdict,
    or None when the story is gone, expired, or could not be updated.
    """
    db = session_factory()
    try:
        story = db.get(Story, story_id)
        if story is None:
            logger.warning("Deep review skipped, story not found", extra={"story_id": str(story_id)})
            return None
        if story.is_expired():
            logger.info("Deep review skipped, story expired", extra={"story_id": str(story_id)})
            return None

        previous = story.mod_status
        result = await engine.evaluate_async(story.to_moderation_input(), current_decision=previous)

        if is_more_restrictive(result.decision, previous):
            story.apply_verdict(result)
        else:
            story.mod_risk = result.risk
            story.mod_tags = list(result.tags)
            story.mod_confidence = result.confidence

        try:
            _log_step(db, story, Phase.ASYNC, previous, result)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                "Database error storing deep review",
                extra={"story_id": str(story_id), "error": str(e)},
                exc_info=True
            )
            return None

        logger.info(
            "Deep review completed",
            extra={
                "story_id": str(story_id),
                "decision": story.mod_status.value,
                "phase": Phase.ASYNC.value,
                "previous_decision": previous.value
            }
        )

        event = decision_event(story, previous, result, Phase.ASYNC)
        if event is not None and story.mod_status != previous:
            await asyncio.to_thread(dispatch_moderation_event, event, session_factory)

        return result
    finally:
        db.close()


def get_story(story_id: UUID, db: Session) -> Story:
    story = db.get(Story, story_id)
    if story is None:
        raise StoryNotFoundException(story_id)
    return story


def apply_manual_decision(
    story_id: UUID,
    decision: Decision,
    reviewer: str,
    note: Optional[str],
    db: Session,
    background_tasks: BackgroundTasks,
    session_factory: Callable[[], Session]
) -> Story:
    """
    Record a moderator's verdict.

    Human review may loosen a decision as well as tighten it.

    Raises:
        StoryNotFoundException: If the story does not exist
        DatabaseException: If the update cannot be stored
    """
    story = get_story(story_id, db)
    previous = story.mod_status

    result = ModerationResult(
        risk=story.mod_risk if story.mod_risk is not None else 0.0,
        tags=story.mod_tags or [],
        decision=decision,
        confidence=1.0,
        reason=note,
    )
    story.apply_verdict(result)

    try:
        _log_step(db, story, Phase.MANUAL, previous, result, reviewer=reviewer)
        db.commit()
        db.refresh(story)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "Database error storing manual decision",
            extra={"story_id": str(story_id), "error": str(e)},
            exc_info=True
        )
        raise DatabaseException(f"Failed to store manual decision: {str(e)}", operation="manual_decision")

    logger.info(
        f"Manual decision by {reviewer}",
        extra={
            "story_id": str(story_id),
            "decision": decision.value,
            "phase": Phase.MANUAL.value,
            "previous_decision": previous.value
        }
    )

    _schedule_event(background_tasks, decision_event(story, previous, result, Phase.MANUAL), session_factory)
    return story


def list_moderation_queue(db: Session, limit: int = 50) -> List[Story]:
    """Unexpired stories awaiting review, oldest first."""
    return (
        db.query(Story)
        .filter(Story.mod_status == Decision.PENDING, Story.expires_at > datetime.utcnow())
        .order_by(Story.created_at.asc())
        .limit(limit)
        .all()
    )
