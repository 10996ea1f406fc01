from typing import List

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+psycopg://user:password@db/contenthub"
    LOG_LEVEL: str = "INFO"

    AWS_ENDPOINT_URL: str = "https://storage.example.com"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION_NAME: str = "eu-north-1"
    S3_BUCKET_NAME: str = "translated-images"
    STORAGE_PUBLIC_BASE_URL: str = "https://storage.example.com/translated-images"

    GENERATION_API_BASE_URL: str = "https://api.kie.ai/api/v1"
    GENERATION_API_KEY: str = ""
    GENERATION_MODEL: str = "nano-banana-pro"

    ANALYSIS_API_BASE_URL: str = "https://api.openai.com/v1"
    ANALYSIS_API_KEY: str = ""
    ANALYSIS_MODEL: str = "gpt-4o"

    META_API_BASE_URL: str = "https://graph.facebook.com/v22.0"
    META_SYSTEM_USER_TOKEN: str = ""
    META_AD_ACCOUNT_ID: str = ""
    META_PAGE_ID: str = ""

    STALE_CLAIM_SECONDS: int = 10 * 60
    GENERATION_POLL_INTERVAL_SECONDS: float = 3.0
    GENERATION_MAX_WAIT_SECONDS: float = 280.0
    META_PUSH_CONCURRENCY: int = 3
    GENERATION_RESOLUTION: str = "2K"

    IMAGE_QUALITY_ENABLED: bool = True
    IMAGE_QUALITY_THRESHOLD: int = 80
    PAGE_QUALITY_ENABLED: bool = True
    PAGE_QUALITY_THRESHOLD: int = 85
    DEFAULT_LANGUAGES: List[str] = ["sv", "da", "no", "de"]

    class Config:
        env_file = ".env"


settings = Settings()


class PipelineSettings(BaseModel):
    """
    Knobs for one pipeline invocation.

    Built once per request and handed to the service layer explicitly, so a
    single call never reads settings that change halfway through it.
    """

    quality_enabled: bool = True
    quality_threshold: int = 80
    page_quality_enabled: bool = True
    page_quality_threshold: int = 85
    default_languages: List[str] = Field(default_factory=lambda: ["sv", "da", "no", "de"])

    stale_after_seconds: int = 10 * 60
    poll_interval_seconds: float = 3.0
    max_wait_seconds: float = 280.0
    push_concurrency: int = 3
    generation_resolution: str = "2K"

    @classmethod
    def from_settings(cls, source: Settings = settings) -> "PipelineSettings":
        return cls(
            quality_enabled=source.IMAGE_QUALITY_ENABLED,
            quality_threshold=source.IMAGE_QUALITY_THRESHOLD,
            page_quality_enabled=source.PAGE_QUALITY_ENABLED,
            page_quality_threshold=source.PAGE_QUALITY_THRESHOLD,
            default_languages=list(source.DEFAULT_LANGUAGES),
            stale_after_seconds=source.STALE_CLAIM_SECONDS,
            poll_interval_seconds=source.GENERATION_POLL_INTERVAL_SECONDS,
            max_wait_seconds=source.GENERATION_MAX_WAIT_SECONDS,
            push_concurrency=source.META_PUSH_CONCURRENCY,
            generation_resolution=source.GENERATION_RESOLUTION,
        )
