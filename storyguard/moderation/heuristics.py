"""
Local classifiers used on the pre-publish path. No network access.
"""

from typing import List, Optional

from storyguard.moderation.models import Decision, MediaMetadata, ModerationResult

HARMFUL_KEYWORDS = (
    "hate", "violence", "abuse", "harassment", "threat",
    "spam", "scam", "fake", "misleading",
    "nsfw", "adult", "explicit", "sexual",
)

SUSPICIOUS_PHRASES = (
    "click here", "free money", "win now", "limited time",
    "act now", "don't miss", "exclusive offer",
)

LONG_TEXT_CHARS = 200

# Text heuristic thresholds, deliberately separate from policy.risk_to_decision
TEXT_REJECT_THRESHOLD = 0.7
TEXT_PENDING_THRESHOLD = 0.4

LONG_VIDEO_SECONDS = 15
LARGE_FILE_BYTES = 25 * 1024 * 1024


def _settle(risk: float) -> float:
    # Clamp and drop float noise (0.1 + 0.2 -> 0.3)
    return round(min(risk, 1.0), 2)


def _contains_any(haystack: str, needles) -> bool:
    return any(needle in haystack for needle in needles)


def classify_text(text: str) -> ModerationResult:
    """
    Keyword classifier for story text and captions.

    Each keyword family counts once no matter how many of its entries match.
    """
    risk = 0.1
    tags: List[str] = []
    lower_text = text.lower()

    if _contains_any(lower_text, HARMFUL_KEYWORDS):
        risk += 0.3
        tags.append("harmful_content")

    if _contains_any(lower_text, SUSPICIOUS_PHRASES):
        risk += 0.2
        tags.append("suspicious_content")

    if len(text) > LONG_TEXT_CHARS:
        risk += 0.1
        tags.append("long_text")

    risk = _settle(risk)
    if risk >= TEXT_REJECT_THRESHOLD:
        decision = Decision.REJECTED
    elif risk >= TEXT_PENDING_THRESHOLD:
        decision = Decision.PENDING
    else:
        decision = Decision.APPROVED

    return ModerationResult(risk=risk, tags=tags, decision=decision, confidence=0.8)


def classify_video(metadata: Optional[MediaMetadata]) -> ModerationResult:
    """Metadata-only video check; always routes to review."""
    risk = 0.2
    tags: List[str] = []

    if metadata is not None:
        if metadata.duration_seconds and metadata.duration_seconds > LONG_VIDEO_SECONDS:
            risk += 0.1
            tags.append("long_video")

        if metadata.size_bytes and metadata.size_bytes > LARGE_FILE_BYTES:
            risk += 0.1
            tags.append("large_file")

    return ModerationResult(
        risk=_settle(risk),
        tags=tags,
        decision=Decision.PENDING,
        confidence=0.6,
        reason="Video requires manual review",
    )
