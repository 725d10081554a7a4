from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = "StoryGuard Moderation API"
    database_url: str = "sqlite:///./storyguard.db"
    log_level: str = "INFO"
    log_file: str | None = None

    # Classifier provider
    moderation_api_url: str = ""
    moderation_api_key: str = ""
    moderation_enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("moderation_enabled", "enable_ai_moderation"),
    )
    moderation_fast_timeout: float = 3.0
    moderation_deep_timeout: float = 120.0

    admin_api_key: str | None = None
    slack_webhook_url: str | None = None
    brevo_api_key: str | None = None

    class Config:
        env_file = ".env"

settings = Settings()
