"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1024, le=65535)
    debug: bool = Field(default=False)
    workers: int = Field(default=1, ge=1, le=8)

    # Token issuance
    jwt_issuer: str = Field(min_length=1)
    jwt_audience: str = Field(min_length=1)
    jwt_signing_key: str = Field(min_length=32)  # HS256 needs a 256-bit key
    token_expire_days: int = Field(default=30, ge=1)
    token_role: str = Field(default="api_client")
    api_keys: List[str] = Field(default_factory=list)

    # Security
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Cache Configuration
    cache_backend: Literal["memory", "redis"] = Field(default="memory")
    redis_url: Optional[str] = Field(default=None)
    forms_cache_ttl: int = Field(default=900, ge=1)  # 15 minutes

    # Upstream form source
    forms_source_file: str = Field(default="data/marketing_forms.json")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    log_file: Optional[str] = Field(default=None)

    @field_validator("api_keys")
    @classmethod
    def drop_blank_api_keys(cls, v):
        """Blank entries would otherwise make an empty key valid."""
        return [key for key in v if key and key.strip()]

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v):
        if v and not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("REDIS_URL must use redis://, rediss:// or unix://")
        return v

    @property
    def is_development(self) -> bool:
        """Debug mode: reload, API docs and a single worker."""
        return self.debug

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
