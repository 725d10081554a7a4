from sqlalchemy.orm import Session
from sqlalchemy import func
from storyguard.models.story import Story
from storyguard.moderation.models import Decision
from storyguard.schemas.analytics import AuthorSummary, ModerationStats

def get_moderation_stats(db: Session) -> ModerationStats:
    counts = dict(
        db.query(Story.mod_status, func.count(Story.id))
        .group_by(Story.mod_status)
        .all()
    )
    avg_latency = db.query(func.avg(Story.mod_latency_ms)).scalar()

    return ModerationStats(
        total_moderated=sum(counts.values()),
        approved=counts.get(Decision.APPROVED, 0),
        pending=counts.get(Decision.PENDING, 0),
        rejected=counts.get(Decision.REJECTED, 0),
        shadow=counts.get(Decision.SHADOW, 0),
        avg_processing_time=round(avg_latency or 0.0, 2),
    )

def get_author_summary(author_id: str, db: Session) -> AuthorSummary:
    breakdown_query = db.query(
        Story.mod_status,
        func.count(Story.id)
    ).filter(
        Story.author_id == author_id
    ).group_by(Story.mod_status).all()

    breakdown = {status.value: count for status, count in breakdown_query}

    return AuthorSummary(
        author_id=author_id,
        total_stories=sum(breakdown.values()),
        breakdown=breakdown
    )
