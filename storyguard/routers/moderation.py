from fastapi import APIRouter, Depends, Query, Request
from storyguard.core.dependencies import get_moderation_engine
from storyguard.core.security import rate_limit_dependency
from storyguard.core.logger import logger
from storyguard.moderation.engine import ModerationEngine
from storyguard.moderation.models import ModerationInput, ModerationResult
from storyguard.moderation.policy import risk_to_decision
from storyguard.schemas.moderation import (
    BatchEvaluationRequest,
    BatchEvaluationResponse,
    DeepEvaluationRequest,
    RiskDecisionResponse,
)

router = APIRouter(prefix="/api/v1/moderate", tags=["moderation"])

@router.post("/evaluate", response_model=ModerationResult, status_code=200)
async def evaluate(
    payload: ModerationInput,
    request: Request,
    engine: ModerationEngine = Depends(get_moderation_engine),
    _: None = Depends(rate_limit_dependency)
):
    """
    Run the pre-publish check on a submission without storing anything.

    The engine never fails the request: provider problems come back as a
    PENDING verdict tagged ``moderation_error`` or ``image_analysis_error``.
    """
    logger.info(
        "Pre-publish evaluation requested",
        extra={
            "content_type": payload.content_type.value,
            "client_ip": request.client.host if request.client else "unknown"
        }
    )
    return await engine.evaluate_sync(payload)

@router.post("/deep", response_model=ModerationResult, status_code=200)
async def evaluate_deep(
    payload: DeepEvaluationRequest,
    engine: ModerationEngine = Depends(get_moderation_engine),
    _: None = Depends(rate_limit_dependency)
):
    """
    Run the deep scan and reconcile it against ``current_decision``.

    The returned decision is never less restrictive than the current one.
    """
    logger.info(
        "Deep evaluation requested",
        extra={
            "content_type": payload.submission.content_type.value,
            "decision": payload.current_decision.value
        }
    )
    return await engine.evaluate_async(payload.submission, current_decision=payload.current_decision)

@router.post("/batch", response_model=BatchEvaluationResponse, status_code=200)
async def evaluate_batch(
    payload: BatchEvaluationRequest,
    engine: ModerationEngine = Depends(get_moderation_engine),
    _: None = Depends(rate_limit_dependency)
):
    """Pre-publish check for several submissions; results keep input order."""
    logger.info("Batch evaluation requested", extra={"batch_size": len(payload.inputs)})
    results = await engine.evaluate_batch(payload.inputs)
    return BatchEvaluationResponse(results=results)

@router.get("/decision", response_model=RiskDecisionResponse, status_code=200)
async def decision_for_risk(risk: float = Query(ge=0.0, le=1.0, allow_inf_nan=False)):
    """Map a provider risk score to the decision it would produce."""
    return RiskDecisionResponse(risk=risk, decision=risk_to_decision(risk))
