"""Configuration management using pydantic-settings."""

from typing import List, Literal, Optional

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Credential values that count as "not configured".
PLACEHOLDER_CREDENTIALS = frozenset({"dummy"})


def is_real_credential(value: Optional[str]) -> bool:
    if not value:
        return False
    value = value.strip()
    return bool(value) and value not in PLACEHOLDER_CREDENTIALS


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "Chat Agent Gateway"
    VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    API_PREFIX: str = ""
    SENTRY_DSN: Optional[str] = None

    FRONTEND_URL: str = "http://localhost:3000"
    # comma-separated
    BACKEND_CORS_ORIGINS: str = ""

    # Provider credentials
    OPENAI_API_KEY: Optional[str] = None
    GROQ_API_KEY: Optional[str] = None
    ANTHROPIC_API_KEY: Optional[str] = None
    OPENROUTER_API_KEY: Optional[str] = None

    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1"
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"

    DEFAULT_PROVIDER: str = "groq"
    FREE_MODE: bool = False
    # comma-separated provider ids
    DISABLED_PROVIDERS: str = ""
    MOCK_UNCONFIGURED_PROVIDERS: bool = True

    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 1000
    LLM_TIMEOUT_SECONDS: float = 60.0
    LLM_MAX_ATTEMPTS: int = Field(default=3, ge=1)

    MOCK_STREAM_DELAY_MS: int = Field(default=100, ge=0)

    # Contentstack delivery API
    CONTENTSTACK_API_KEY: Optional[str] = None
    CONTENTSTACK_DELIVERY_TOKEN: Optional[str] = None
    CONTENTSTACK_ENVIRONMENT: str = "production"
    CONTENTSTACK_REGION: str = "us"
    CONTENTSTACK_CONTENT_TYPES: str = "page,article,blog_post,product,tour"
    CONTENTSTACK_TIMEOUT_SECONDS: float = 10.0
    CONTENTSTACK_CACHE_TTL_SECONDS: int = 300
    CONTENTSTACK_MOCK_CATALOG: bool = False
    AUGMENTATION_LIMIT: int = 3

    ANALYTICS_ENABLED: bool = True
    ANALYTICS_FILE: str = "analytics.json"
    ANALYTICS_ANONYMIZE_CLIENTS: bool = True

    RATE_LIMIT_PER_MINUTE: int = 30
    # Only honour X-Client-ID when a trusted proxy sets it
    TRUST_CLIENT_ID_HEADER: bool = False

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> List[str]:
        origins = [o.strip().rstrip("/") for o in self.BACKEND_CORS_ORIGINS.split(",") if o.strip()]
        if self.FRONTEND_URL and self.FRONTEND_URL.rstrip("/") not in origins:
            origins.append(self.FRONTEND_URL.rstrip("/"))
        return origins

    @property
    def disabled_provider_ids(self) -> List[str]:
        return [p.strip().lower() for p in self.DISABLED_PROVIDERS.split(",") if p.strip()]

    @property
    def content_type_uids(self) -> List[str]:
        return [c.strip() for c in self.CONTENTSTACK_CONTENT_TYPES.split(",") if c.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    def credential(self, env_name: str) -> Optional[str]:
        """Look up a credential field by its environment variable name."""
        return getattr(self, env_name, None)


settings = Settings()  # type: ignore
