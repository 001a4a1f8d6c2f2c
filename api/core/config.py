"""Renderer settings, read from the environment and an optional ``.env``."""

from functools import cached_property, lru_cache
from typing import Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_REQUIRED_STORAGE_FIELDS = (
    "minio_endpoint",
    "minio_access_key",
    "minio_secret_key",
    "minio_bucket",
)


class Settings(BaseSettings):
    """Environment-backed configuration; one frozen instance per process."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    environment: str = "production"

    # Artifact bucket. Endpoint is host[:port] without a scheme
    minio_endpoint: str = ""
    minio_access_key: str = ""
    minio_secret_key: str = ""
    minio_bucket: str = ""
    minio_secure: bool = True
    minio_region: str = "us-east-1"

    # Seconds allowed per embedded image download
    http_timeout: float = Field(default=10.0, gt=0)

    # Lifetime of presigned artifact URLs; S3 caps presigning at 7 days
    presign_ttl_seconds: int = Field(
        default=7 * 24 * 60 * 60, ge=60, le=7 * 24 * 60 * 60
    )

    # Comma-separated browser origins allowed to call the API
    cors_allowed_origins: str = ""

    # slowapi counter storage, e.g. "redis://host:6379/0" for multiple replicas
    ratelimit_storage_uri: str = "memory://"
    # Key rate limits on the first X-Forwarded-For hop (only behind a proxy)
    trust_forwarded_for: bool = False

    # DEBUG=true skips the storage check and allows localhost CORS
    debug: bool = False
    enable_docs: bool = False

    @model_validator(mode="after")
    def require_storage_outside_debug(self) -> Self:
        if self.debug:
            return self

        missing = [name for name in _REQUIRED_STORAGE_FIELDS if not getattr(self, name)]
        if missing:
            raise ValueError(
                f"{', '.join(m.upper() for m in missing)} must be set. "
                "Set DEBUG=true to run without object storage."
            )
        return self

    @property
    def docs_enabled(self) -> bool:
        return self.enable_docs or self.debug

    @cached_property
    def allowed_origins(self) -> list[str]:
        """Configured CORS origins, deduplicated, plus localhost in debug."""
        candidates = ["http://localhost:8000"] if self.debug else []
        candidates += [o.strip() for o in self.cors_allowed_origins.split(",")]
        return list(dict.fromkeys(o for o in candidates if o))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    """Forget the cached Settings so the next call re-reads the environment."""
    get_settings.cache_clear()
