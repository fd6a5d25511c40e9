from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./repo_insight.db"

    # Redis
    redis_url: str = "redis://localhost:6379"

    # GitHub
    github_token: Optional[str] = None
    github_api_base: str = "https://api.github.com"
    http_timeout_s: float = 10.0
    contributors_limit: int = 10

    # LLM (any OpenAI-compatible endpoint)
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.2
    llm_timeout_s: float = 60.0
    llm_max_tokens: int = 1200
    readme_max_chars: int = 8000

    # Security
    secret_key: str = "change-this-secret-key-in-production"
    api_key_prefix: str = "repo-insight-"
    default_usage_limit: int = 100
    session_token_hours: int = 24
    auth_callback_secret: Optional[str] = None
    allow_anonymous_analysis: bool = False

    # Server Settings
    debug: bool = False
    log_level: str = "info"
    host: str = "0.0.0.0"
    port: int = 8000
    allowed_origins: str = '["http://localhost:3000"]'

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()
