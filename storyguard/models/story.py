import enum
import uuid
from datetime import datetime, timedelta
from sqlalchemy import Column, String, Enum, DateTime, Float, Integer, Text, JSON, Uuid
from sqlalchemy.orm import relationship

from storyguard.db.session import Base
from storyguard.moderation.models import (
    ContentType,
    Decision,
    MediaDimensions,
    MediaMetadata,
    ModerationInput,
    ModerationResult,
)

STORY_TTL = timedelta(hours=24)


class Visibility(str, enum.Enum):
    FOLLOWERS = "FOLLOWERS"
    PUBLIC = "PUBLIC"


class Story(Base):
    __tablename__ = "stories"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    author_id = Column(String, nullable=False, index=True)
    author_email = Column(String, nullable=True)
    content_type = Column(Enum(ContentType), nullable=False)
    visibility = Column(Enum(Visibility), default=Visibility.FOLLOWERS, nullable=False)

    text = Column(Text, nullable=True)
    media_ref = Column(String, nullable=True)
    thumbnail_ref = Column(String, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    size_bytes = Column(Integer, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    # Moderation verdict currently in force
    mod_status = Column(Enum(Decision), default=Decision.PENDING, nullable=False, index=True)
    mod_risk = Column(Float, nullable=True)
    mod_tags = Column(JSON, nullable=True)
    mod_confidence = Column(Float, nullable=True)
    mod_reason = Column(Text, nullable=True)
    mod_latency_ms = Column(Float, nullable=True)

    # Relationships
    moderation_logs = relationship("ModerationLog", back_populates="story", cascade="all, delete-orphan")
    notifications = relationship("NotificationLog", back_populates="story", cascade="all, delete-orphan")

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at

    def to_moderation_input(self) -> ModerationInput:
        metadata = None
        if any(v is not None for v in (self.duration_seconds, self.size_bytes, self.width, self.height)):
            dimensions = None
            if self.width and self.height:
                dimensions = MediaDimensions(width=self.width, height=self.height)
            metadata = MediaMetadata(
                duration_seconds=self.duration_seconds,
                size_bytes=self.size_bytes,
                dimensions=dimensions,
            )
        return ModerationInput(
            content_type=self.content_type,
            text=self.text,
            media_ref=self.media_ref,
            thumbnail_ref=self.thumbnail_ref,
            metadata=metadata,
        )

    def apply_verdict(self, result: ModerationResult) -> None:
        self.mod_status = result.decision
        self.mod_risk = result.risk
        self.mod_tags = list(result.tags)
        self.mod_confidence = result.confidence
        self.mod_reason = result.reason
