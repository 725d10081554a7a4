"""
Moderation decision engine.

Two evaluation modes share one engine instance:

* ``evaluate_sync`` gates a publish action. It must answer fast, and any
  failure sends the story to human review instead of approving it.
* ``evaluate_async`` runs the deep scan on a story that is already live. It
  may only tighten the stored decision, and its own failures are
  non-punitive.

Neither method raises. The engine holds only read-only configuration and a
provider client, so one instance is shared by the whole process.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional

from storyguard.core.exceptions import ClassifierProviderException
from storyguard.core.logger import logger
from storyguard.moderation.heuristics import classify_text, classify_video
from storyguard.moderation.models import (
    ContentType,
    Decision,
    ModerationInput,
    ModerationResult,
)
from storyguard.moderation.policy import reconcile, risk_to_decision
from storyguard.clients.classifier_client import ClassifierClient, ProviderVerdict


@dataclass(frozen=True)
class ModerationConfig:
    api_url: str = ""
    api_key: str = ""
    enabled: bool = False
    fast_timeout: float = 3.0
    deep_timeout: float = 120.0

    @classmethod
    def from_settings(cls, settings) -> "ModerationConfig":
        return cls(
            api_url=settings.moderation_api_url,
            api_key=settings.moderation_api_key,
            enabled=settings.moderation_enabled,
            fast_timeout=settings.moderation_fast_timeout,
            deep_timeout=settings.moderation_deep_timeout,
        )


def bypass_result() -> ModerationResult:
    return ModerationResult(risk=0.1, tags=[], decision=Decision.APPROVED, confidence=1.0)


def manual_review_result() -> ModerationResult:
    return ModerationResult(
        risk=0.2,
        tags=["manual_review_needed"],
        decision=Decision.PENDING,
        confidence=0.5,
        reason="Content type requires manual review",
    )


def sync_error_result() -> ModerationResult:
    return ModerationResult(
        risk=0.5,
        tags=["moderation_error"],
        decision=Decision.PENDING,
        confidence=0.3,
        reason="moderation service error",
    )


def image_error_result() -> ModerationResult:
    return ModerationResult(
        risk=0.3,
        tags=["image_analysis_error"],
        decision=Decision.PENDING,
        confidence=0.5,
        reason="Image analysis failed",
    )


def deep_error_result(current: Decision = Decision.APPROVED) -> ModerationResult:
    return ModerationResult(
        risk=0.2,
        tags=["deep_analysis_error"],
        decision=current,
        confidence=0.5,
        reason="Deep analysis failed",
    )


def async_error_result(current: Decision = Decision.APPROVED) -> ModerationResult:
    return ModerationResult(
        risk=0.3,
        tags=["async_moderation_error"],
        decision=current,
        confidence=0.5,
        reason="Deep review failed",
    )


def verdict_to_result(verdict: ProviderVerdict) -> ModerationResult:
    return ModerationResult(
        risk=verdict.risk,
        tags=verdict.tags,
        decision=risk_to_decision(verdict.risk),
        confidence=verdict.confidence,
    )


class ModerationEngine:
    def __init__(
        self,
        config: ModerationConfig,
        client: Optional[ClassifierClient] = None
    ):
        self.config = config
        self.client = client or ClassifierClient(
            base_url=config.api_url,
            api_key=config.api_key,
            fast_timeout=config.fast_timeout,
            deep_timeout=config.deep_timeout,
        )

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    async def evaluate_sync(self, payload: ModerationInput) -> ModerationResult:
        """
        Pre-publish check.

        Text goes through the keyword heuristic, images through the fast
        remote check on their thumbnail, videos through the metadata
        heuristic. Inputs missing the field their type needs are queued for
        manual review without any network call.
        """
        if not self.enabled:
            return bypass_result()

        try:
            if payload.content_type == ContentType.TEXT and payload.text:
                return classify_text(payload.text)

            if payload.content_type == ContentType.IMAGE and payload.thumbnail_ref:
                return await self.evaluate_image(payload.thumbnail_ref)

            if payload.content_type == ContentType.VIDEO and payload.thumbnail_ref:
                return classify_video(payload.metadata)

            logger.info(
                "Submission lacks the field its type needs, queueing for manual review",
                extra={"content_type": payload.content_type.value}
            )
            return manual_review_result()

        except Exception as e:
            logger.error(
                "Pre-publish moderation failed, deferring to manual review",
                extra={"content_type": payload.content_type.value, "error": str(e)},
                exc_info=True
            )
            return sync_error_result()

    async def evaluate_image(self, thumbnail_ref: str) -> ModerationResult:
        try:
            verdict = await self.client.check_image_fast(thumbnail_ref)
        except ClassifierProviderException as e:
            logger.error(
                "Fast image check failed",
                extra={"error": e.message, "details": e.details},
                exc_info=True
            )
            return image_error_result()

        return verdict_to_result(verdict)

    async def evaluate_async(
        self,
        payload: ModerationInput,
        current_decision: Decision = Decision.APPROVED
    ) -> ModerationResult:
        """
        Post-publish deep scan reconciled against ``current_decision``.

        Only content that already went live reaches this path, hence the
        APPROVED default.
        """
        if not self.enabled:
            return bypass_result()

        try:
            try:
                verdict = await self.client.analyze_deep(payload)
            except ClassifierProviderException as e:
                logger.error(
                    "Deep analysis failed, keeping current decision",
                    extra={
                        "content_type": payload.content_type.value,
                        "decision": current_decision.value,
                        "error": e.message,
                    },
                    exc_info=True
                )
                return deep_error_result(current_decision)

            return reconcile(verdict_to_result(verdict), current_decision)

        except Exception as e:
            logger.error(
                "Deep review failed unexpectedly, keeping current decision",
                extra={"content_type": payload.content_type.value, "error": str(e)},
                exc_info=True
            )
            return async_error_result(current_decision)

    async def evaluate_batch(self, payloads: List[ModerationInput]) -> List[ModerationResult]:
        return list(await asyncio.gather(*(self.evaluate_sync(p) for p in payloads)))

    # Exposed so consumers holding an engine need no second import
    risk_to_decision = staticmethod(risk_to_decision)
