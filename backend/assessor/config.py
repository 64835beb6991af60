from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Assessor API"
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    cors_origins: str = "http://localhost:3000"
    cors_allow_credentials: bool = True
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"

    # Quiet period before a burst of edits is committed as one snapshot.
    autosave_quiet_period_seconds: float = 5.0
    autosave_enabled: bool = True

    # MVP default is sqlite; snapshots are stored as JSON payloads.
    database_url: str = "sqlite:///./assessor.db"
    frameworks_dir: str = "data/frameworks"

    storage_backend: str = "local"  # local|s3
    storage_root: str = "data/evidence"
    s3_bucket: str = "assessor-dev"
    s3_prefix: str = "assessor"
    aws_region: str = "us-east-1"
    max_upload_file_bytes: int = 10 * 1024 * 1024

    task_due_days: int = 7
    task_estimated_hours: int = 2
    default_user_id: str = "current-user"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
