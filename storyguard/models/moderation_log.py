import uuid
from datetime import datetime
from sqlalchemy import Column, String, Float, ForeignKey, Text, JSON, Enum, DateTime, Uuid
from sqlalchemy.orm import relationship

from storyguard.db.session import Base
from storyguard.moderation.models import Decision, Phase


class ModerationLog(Base):
    """One row per evaluation or review that touched a story."""

    __tablename__ = "moderation_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    story_id = Column(Uuid(as_uuid=True), ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True)

    phase = Column(Enum(Phase), nullable=False)
    previous_decision = Column(Enum(Decision), nullable=True)
    decision = Column(Enum(Decision), nullable=False)  # decision stored after this step
    computed_decision = Column(Enum(Decision), nullable=True)  # what the evaluator produced
    risk = Column(Float, nullable=True)
    tags = Column(JSON, nullable=True)
    confidence = Column(Float, nullable=True)
    reason = Column(Text, nullable=True)
    reviewer = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationship
    story = relationship("Story", back_populates="moderation_logs")
