from fastapi import Request

from storyguard.core.config import settings
from storyguard.moderation.engine import ModerationConfig, ModerationEngine


def build_moderation_engine() -> ModerationEngine:
    return ModerationEngine(ModerationConfig.from_settings(settings))


def get_moderation_engine(request: Request) -> ModerationEngine:
    """The process-wide engine created during application startup."""
    engine = getattr(request.app.state, "moderation_engine", None)
    if engine is None:
        engine = build_moderation_engine()
        request.app.state.moderation_engine = engine
    return engine
