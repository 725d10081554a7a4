import enum
from typing import Optional, List, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ContentType(str, enum.Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"


class Decision(str, enum.Enum):
    APPROVED = "APPROVED"
    SHADOW = "SHADOW"
    PENDING = "PENDING"
    REJECTED = "REJECTED"

    @property
    def restrictiveness(self) -> int:
        return _RESTRICTIVENESS[self]


_RESTRICTIVENESS = {
    Decision.APPROVED: 0,
    Decision.SHADOW: 1,
    Decision.PENDING: 2,
    Decision.REJECTED: 3,
}


class Phase(str, enum.Enum):
    SYNC = "SYNC"
    ASYNC = "ASYNC"
    MANUAL = "MANUAL"


class MediaDimensions(BaseModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)


class MediaMetadata(BaseModel):
    duration_seconds: Optional[float] = Field(default=None, ge=0)
    size_bytes: Optional[int] = Field(default=None, ge=0)
    dimensions: Optional[MediaDimensions] = None


class ModerationInput(BaseModel):
    """A submission to be judged."""

    model_config = ConfigDict(frozen=True)

    content_type: ContentType
    text: Optional[str] = None
    media_ref: Optional[str] = None
    thumbnail_ref: Optional[str] = None
    metadata: Optional[MediaMetadata] = None


class ModerationResult(BaseModel):
    """
    A verdict. Produced fresh by every evaluation and never mutated; use
    ``model_copy(update=...)`` to derive a variant.
    """

    model_config = ConfigDict(frozen=True)

    risk: float = Field(ge=0.0, le=1.0)
    tags: List[str] = Field(default_factory=list)
    decision: Decision
    confidence: float = Field(ge=0.0, le=1.0)
    reason: Optional[str] = None

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, tags: List[str]) -> List[str]:
        return list(dict.fromkeys(tags))


class ModerationEvent(BaseModel):
    """Emitted when a story's decision changes in a way its author should hear about."""

    model_config = ConfigDict(frozen=True)

    story_id: UUID
    author_id: str
    author_email: Optional[str] = None
    previous_decision: Optional[Decision] = None
    decision: Decision
    phase: Phase
    reason: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.decision == Decision.APPROVED

    def log_extra(self) -> dict[str, Any]:
        return {
            "story_id": str(self.story_id),
            "author_id": self.author_id,
            "decision": self.decision.value,
            "phase": self.phase.value,
        }
