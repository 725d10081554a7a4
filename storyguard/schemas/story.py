from datetime import datetime
from uuid import UUID
from typing import List, Optional, Literal

from pydantic import BaseModel, EmailStr, Field

from storyguard.models.story import Visibility
from storyguard.moderation.models import ContentType, Decision, MediaMetadata


# ---- Requests ----
class StoryCreateRequest(BaseModel):
    author_id: str = Field(min_length=1, max_length=128)
    author_email: Optional[EmailStr] = None
    content_type: ContentType
    visibility: Visibility = Visibility.FOLLOWERS
    text: Optional[str] = None
    media_ref: Optional[str] = None
    thumbnail_ref: Optional[str] = None
    metadata: Optional[MediaMetadata] = None


class ManualDecisionRequest(BaseModel):
    action: Literal["APPROVE", "SHADOW", "REJECT"]
    reviewer: str = Field(min_length=1, max_length=128)
    note: Optional[str] = Field(default=None, max_length=1000)

    @property
    def decision(self) -> Decision:
        return {
            "APPROVE": Decision.APPROVED,
            "SHADOW": Decision.SHADOW,
            "REJECT": Decision.REJECTED,
        }[self.action]


# ---- Responses ----
class StoryResponse(BaseModel):
    id: UUID
    author_id: str
    content_type: ContentType
    visibility: Visibility
    text: Optional[str] = None
    media_ref: Optional[str] = None
    thumbnail_ref: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    mod_status: Decision
    mod_risk: Optional[float] = None
    mod_tags: Optional[List[str]] = None
    mod_confidence: Optional[float] = None
    mod_reason: Optional[str] = None

    class Config:
        from_attributes = True


class ModerationQueueResponse(BaseModel):
    items: List[StoryResponse]
    count: int
