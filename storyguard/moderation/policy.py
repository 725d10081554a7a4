"""
Decision policy shared by every moderation path.

``risk_to_decision`` owns the provider risk thresholds. The local text
heuristic keeps its own thresholds in ``heuristics.py``.
"""

from typing import Optional, Any

from storyguard.moderation.models import (
    Decision,
    ModerationEvent,
    ModerationResult,
    Phase,
)

REJECT_THRESHOLD = 0.8
SHADOW_THRESHOLD = 0.6
PENDING_THRESHOLD = 0.4

# Decisions an author is told about
NOTIFIABLE_DECISIONS = (Decision.APPROVED, Decision.REJECTED)


def risk_to_decision(risk: float) -> Decision:
    if risk >= REJECT_THRESHOLD:
        return Decision.REJECTED
    if risk >= SHADOW_THRESHOLD:
        return Decision.SHADOW
    if risk >= PENDING_THRESHOLD:
        return Decision.PENDING
    return Decision.APPROVED


def is_more_restrictive(new: Decision, current: Decision) -> bool:
    return new.restrictiveness > current.restrictiveness


def reconcile(
    deep_result: ModerationResult,
    current: Decision = Decision.APPROVED
) -> ModerationResult:
    """
    Apply monotonic restrictiveness to a deep-scan verdict.

    A stricter deep decision is returned unchanged. Otherwise the fresh risk,
    tags and confidence are kept but the decision stays at ``current``, so a
    cleaner deep signal never loosens a live story.
    """
    if is_more_restrictive(deep_result.decision, current):
        return deep_result

    return ModerationResult(
        risk=deep_result.risk,
        tags=deep_result.tags,
        decision=current,
        confidence=deep_result.confidence,
    )


def decision_event(
    story: Any,
    previous: Optional[Decision],
    result: ModerationResult,
    phase: Phase
) -> Optional[ModerationEvent]:
    """
    Build the notification event for a decision change, if there is one.

    ``story`` is anything exposing ``id``, ``author_id`` and ``author_email``.
    A first publish straight to APPROVED is silent since the author already
    sees the story live.
    """
    if result.decision not in NOTIFIABLE_DECISIONS:
        return None
    if previous == result.decision:
        return None
    if previous is None and result.decision == Decision.APPROVED:
        return None

    return ModerationEvent(
        story_id=story.id,
        author_id=story.author_id,
        author_email=getattr(story, "author_email", None),
        previous_decision=previous,
        decision=result.decision,
        phase=phase,
        reason=result.reason,
    )
