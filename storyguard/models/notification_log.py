import uuid
from datetime import datetime
from sqlalchemy import Column, String, Enum, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import enum

from storyguard.db.session import Base


class NotificationStatus(str, enum.Enum):
    sent = "sent"
    failed = "failed"


class NotificationLog(Base):
    __tablename__ = "notification_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    story_id = Column(Uuid(as_uuid=True), ForeignKey("stories.id", ondelete="CASCADE"), nullable=False)

    channel = Column(String, nullable=False, default="email")  # "email" via Brevo, "slack"
    event_type = Column(String, nullable=False)  # story_approved, story_rejected
    status = Column(Enum(NotificationStatus), default=NotificationStatus.sent)
    sent_at = Column(DateTime, default=datetime.utcnow)

    # Relationship
    story = relationship("Story", back_populates="notifications")
