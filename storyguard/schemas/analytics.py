from pydantic import BaseModel
from typing import Dict

class ModerationStats(BaseModel):
    total_moderated: int
    approved: int
    pending: int
    rejected: int
    shadow: int
    avg_processing_time: float  # milliseconds

class AuthorSummary(BaseModel):
    author_id: str
    total_stories: int
    breakdown: Dict[str, int]
