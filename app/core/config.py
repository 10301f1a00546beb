from typing import Annotated, Optional
from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    # Full SQLAlchemy URL; overrides the POSTGRES_* parts when set
    url: Optional[str] = Field(default=None, alias="DATABASE_URL")
    host: str = Field(default="localhost", alias="POSTGRES_HOST")
    port: int = Field(default=5432, alias="POSTGRES_DB_PORT")
    db_name: str = Field(default="flashcards", alias="POSTGRES_DB_NAME")
    user: str = Field(default="postgres", alias="POSTGRES_DB_USER")
    password: str = Field(default="postgres", alias="POSTGRES_DB_PASSWORD")
    auto_create: bool = Field(default=False, alias="DB_AUTO_CREATE")

    @computed_field
    def connection_string(self) -> str:
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.db_name}"


class GenerationSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # Ordered by priority; rotated on rate limit / overload / unavailable model
    models: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [
            "gemini-3-flash-preview",
            "gemini-2.5-flash",
            "gemini-2.5-flash-lite",
            "gemma-3-27b-it",
        ],
        alias="GENERATION_MODELS",
    )
    rotation_delay_seconds: float = Field(default=2.0, alias="ROTATION_DELAY_SECONDS")
    default_count: int = Field(default=5, alias="DEFAULT_CARD_COUNT")
    max_count: int = Field(default=50, alias="MAX_CARD_COUNT")
    language: str = Field(default="Vietnamese", alias="GENERATION_LANGUAGE")
    retry_after_seconds: int = Field(default=30, alias="RETRY_AFTER_SECONDS")

    backfill_batch_size: int = Field(default=3, alias="BACKFILL_BATCH_SIZE")
    backfill_item_delay_seconds: float = Field(
        default=7.0, alias="BACKFILL_ITEM_DELAY_SECONDS"
    )

    topic_cache_size: int = Field(default=256, alias="TOPIC_CACHE_SIZE")
    topic_cache_ttl_seconds: int = Field(default=600, alias="TOPIC_CACHE_TTL_SECONDS")

    @field_validator("models", mode="before")
    @classmethod
    def _split_models(cls, value):
        if isinstance(value, str):
            return [m.strip() for m in value.split(",") if m.strip()]
        return value


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    name: str = Field(default="flashcard-hub", alias="APP_NAME")
    version: str = Field(default="v1", alias="API_VERSION")
    port: int = Field(default=9000, alias="APP_PORT")
    mode: str = Field(default="prod", alias="MODE")
    admin_secret: Optional[str] = Field(default=None, alias="ADMIN_SECRET")
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:3000"], alias="CORS_ORIGINS"
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [o.strip() for o in value.split(",") if o.strip()]
        return value

    @computed_field
    def is_production(self) -> bool:
        return self.mode != "dev"

    @computed_field
    def is_testing(self) -> bool:
        return self.mode == "test"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=lambda: AppSettings())
    database: DatabaseSettings = Field(default_factory=lambda: DatabaseSettings())
    generation: GenerationSettings = Field(
        default_factory=lambda: GenerationSettings()
    )

    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    openrouter_api_key: Optional[str] = Field(default=None, alias="OPENROUTER_API_KEY")

    # Model provider selection: "google" or "openrouter"
    model_provider: str = Field(default="google", alias="MODEL_PROVIDER")


settings = Settings()
