from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Runtime
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    port: int = Field(default=8080, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # CORS / Frontend
    frontend_urls: str | None = Field(default=None, validation_alias="FRONTEND_URLS")

    # AWS / data
    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    # memory | dynamodb
    tender_store_backend: str = Field(default="memory", validation_alias="TENDER_STORE_BACKEND")
    ddb_table_name: str | None = Field(default=None, validation_alias="DDB_TABLE_NAME")

    # Document uploads (S3)
    documents_bucket_name: str | None = Field(
        default=None, validation_alias="DOCUMENTS_BUCKET_NAME"
    )
    # Optional CDN / public prefix for uploaded files; falls back to the S3 URL.
    documents_public_base_url: str | None = Field(
        default=None, validation_alias="DOCUMENTS_PUBLIC_BASE_URL"
    )

    # Site creation collaborator
    sites_api_base_url: str | None = Field(default=None, validation_alias="SITES_API_BASE_URL")
    sites_api_token: str | None = Field(default=None, validation_alias="SITES_API_TOKEN")
    sites_api_timeout_seconds: float = Field(
        default=10.0, validation_alias="SITES_API_TIMEOUT_SECONDS"
    )

    # Tender rules
    tender_number_prefix: str = Field(default="TND", validation_alias="TENDER_NUMBER_PREFIX")
    conversion_lock_ttl_seconds: int = Field(
        default=60, validation_alias="CONVERSION_LOCK_TTL_SECONDS"
    )
    conversion_lock_wait_seconds: float = Field(
        default=15.0, validation_alias="CONVERSION_LOCK_WAIT_SECONDS"
    )
    # Attempts to record a created site when the tender row moved underneath us.
    conversion_save_attempts: int = Field(default=5, validation_alias="CONVERSION_SAVE_ATTEMPTS")

    @property
    def normalized_environment(self) -> str:
        v = (self.environment or "").strip().lower()
        if v in ("prod", "production"):
            return "production"
        if v in ("stage", "staging"):
            return "staging"
        if v in ("dev", "development"):
            return "development"
        return v or "development"

    @property
    def is_production(self) -> bool:
        return self.normalized_environment == "production"

    @property
    def is_development(self) -> bool:
        return self.normalized_environment == "development"

    @property
    def normalized_store_backend(self) -> str:
        v = (self.tender_store_backend or "").strip().lower()
        if v in ("ddb", "dynamo", "dynamodb"):
            return "dynamodb"
        return "memory"

    def allowed_origins(self) -> list[str]:
        raw = str(self.frontend_urls or "")
        return [o.strip().rstrip("/") for o in raw.split(",") if o.strip()]

    def require_in_production(self) -> None:
        """
        Enforce required settings in production.

        Development/staging are allowed to run with partial config (in-memory
        store, in-process site directory), but production must be fully configured.
        """
        if not self.is_production:
            return

        missing: list[str] = []

        if self.normalized_store_backend != "dynamodb":
            missing.append("TENDER_STORE_BACKEND=dynamodb")
        if not self.ddb_table_name:
            missing.append("DDB_TABLE_NAME")
        if not self.sites_api_base_url:
            missing.append("SITES_API_BASE_URL")

        if missing:
            raise RuntimeError(
                "Missing required production environment variables: "
                + ", ".join(missing)
            )

    def to_log_safe_dict(self) -> dict[str, object]:
        def _has(v: object) -> bool:
            return bool(str(v or "").strip())

        return {
            "environment": self.normalized_environment,
            "port": self.port,
            "log_level": self.log_level,
            "frontend_urls": self.allowed_origins(),
            "aws": {
                "aws_region": self.aws_region,
                "tender_store_backend": self.normalized_store_backend,
                "ddb_table_name": self.ddb_table_name,
                "documents_bucket_name": self.documents_bucket_name,
            },
            "integrations": {
                "sites_api_base_url": self.sites_api_base_url if _has(self.sites_api_base_url) else None,
                "sites_api_token_configured": _has(self.sites_api_token),
                "sites_api_timeout_seconds": self.sites_api_timeout_seconds,
            },
            "tenders": {
                "tender_number_prefix": self.tender_number_prefix,
                "conversion_lock_ttl_seconds": self.conversion_lock_ttl_seconds,
                "conversion_lock_wait_seconds": self.conversion_lock_wait_seconds,
                "conversion_save_attempts": self.conversion_save_attempts,
            },
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings()
    s.require_in_production()
    return s
