from pydantic import BaseModel, Field
from typing import List

from storyguard.moderation.models import Decision, ModerationInput, ModerationResult

MAX_BATCH_SIZE = 50


# ---- Requests ----
class DeepEvaluationRequest(BaseModel):
    submission: ModerationInput
    current_decision: Decision = Decision.APPROVED


class BatchEvaluationRequest(BaseModel):
    inputs: List[ModerationInput] = Field(min_length=1, max_length=MAX_BATCH_SIZE)


# ---- Responses ----
class BatchEvaluationResponse(BaseModel):
    results: List[ModerationResult]


class RiskDecisionResponse(BaseModel):
    risk: float
    decision: Decision
