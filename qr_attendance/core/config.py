from __future__ import annotations
from functools import cached_property
from pydantic_settings import BaseSettings
from pydantic import Field
import secrets

class Settings(BaseSettings):
    # DB
    database_url: str = Field("sqlite+aiosqlite:///./qr_attendance.db", alias="DATABASE_URL")

    # QR sessions
    qr_secret: str | None = Field(default=None, alias="QR_SECRET")
    # age ceiling for an active session; <= 0 keeps codes alive until scanned or replaced
    qr_ttl_seconds: int = Field(default=60, alias="QR_TTL_SECONDS")
    expire_sweep_interval_seconds: int = Field(default=5, alias="EXPIRE_SWEEP_INTERVAL_SECONDS")
    # test/demo only: lets an already-used code be scanned again
    allow_multi_scan: bool = Field(default=False, alias="ALLOW_MULTI_SCAN")
    max_image_bytes: int = Field(default=15_000_000, alias="MAX_IMAGE_BYTES")
    default_display_id: str = Field("default-display", alias="DEFAULT_DISPLAY_ID")

    # Static demo bearer tokens, one per role
    admin_token: str = Field("demo-admin-token", alias="ADMIN_TOKEN")
    display_token: str = Field("demo-display-token", alias="DISPLAY_TOKEN")
    user_token: str = Field("demo-user-token", alias="USER_TOKEN")

    # Live events
    subscriber_queue_size: int = Field(default=100, alias="SUBSCRIBER_QUEUE_SIZE")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=60, alias="RL_MAX_REQS")

    # NATS
    nats_enabled: bool = Field(default=True, alias="NATS_ENABLED")
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_scan: str = Field("scans.logged", alias="NATS_SUBJECT_SCAN")

    # HTTP
    cors_origins: str = Field("*", alias="CORS_ORIGINS")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    host: str = Field("0.0.0.0", alias="HOST")
    port: int = Field(4000, alias="PORT")

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @cached_property
    def qr_secret_effective(self) -> str:
        # generated once per process when QR_SECRET is unset
        return self.qr_secret or secrets.token_urlsafe(48)

    @property
    def role_tokens(self) -> dict[str, str]:
        return {"admin": self.admin_token, "display": self.display_token, "user": self.user_token}

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
