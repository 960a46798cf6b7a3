"""XR Studio configuration via pydantic-settings."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class StudioSettings(BaseSettings):
    environment: str = "development"
    app_title: str = "XR Studio"

    # Storage backend selection: MongoDB is used only when both are set.
    managed_deployment: bool = False
    mongodb_uri: str | None = None
    mongodb_database: str = "cluster0"

    # Embedded SQLite store
    sqlite_path: str | None = None
    managed_tmp_dir: str = "/tmp"
    echo_sql: bool = False

    # RAG access tokens
    api_secret_key: str | None = None
    rag_token_ttl_days: int = 7
    rag_signed_url_ttl_seconds: int = 900

    pairing_code_ttl_hours: int = 24

    # S3-compatible object storage (IBM COS, MinIO, AWS)
    cos_endpoint: str | None = None
    cos_access_key_id: str | None = None
    cos_secret_access_key: str | None = None
    cos_region: str | None = None
    cos_bucket_name: str | None = None
    signed_url_ttl_seconds: int = 3600

    # Stand-in for the auth provider's organization context.
    org_header: str = "X-Org-Id"

    model_config = {"env_prefix": "XRSTUDIO_", "env_file": ".env", "extra": "ignore"}

    @property
    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent

    @property
    def project_dir(self) -> Path:
        return self.base_dir.parent

    @property
    def data_dir(self) -> Path:
        if self.managed_deployment:
            return Path(self.managed_tmp_dir) / "data"
        return self.project_dir / ".data"

    @property
    def database_path(self) -> Path:
        if self.sqlite_path:
            path = Path(self.sqlite_path)
            if not path.is_absolute():
                path = self.project_dir / path
            return path
        return self.data_dir / "sqlite.db"

    @property
    def database_url(self) -> str:
        return f"sqlite+aiosqlite:///{self.database_path}"

    @property
    def uses_document_db(self) -> bool:
        return bool(self.managed_deployment and (self.mongodb_uri or "").strip())

    @property
    def object_store_configured(self) -> bool:
        return bool(
            self.cos_endpoint
            and self.cos_access_key_id
            and self.cos_secret_access_key
            and self.cos_bucket_name
        )

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}


settings = StudioSettings()
