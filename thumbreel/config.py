import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="THUMBREEL_",
        extra="ignore",
    )

    # Application
    app_name: str = "Thumbreel Render API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database (users, quota, rendered media)
    database_url: str = "sqlite:///./thumbreel.db"
    database_echo: bool = False

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:5173,http://localhost:3000"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"

    # Filesystem layout
    scratch_root: str = "/tmp/thumbreel-scratch"
    output_dir: str = "uploads"
    font_dir: str = "/usr/share/fonts/truetype"

    # Job queue (bounded worker pool)
    render_workers: int = 2
    render_queue_size: int = 16

    # Frame rasterization fan-out
    render_frame_workers: int = 8
    render_frame_batch_size: int = 120
    progress_frame_interval: int = 10

    # Wall-clock limit for a single job (0 disables)
    render_job_timeout_s: float = 1800.0

    # Finished jobs stay queryable for this long, and at most this many are kept
    job_retention_s: float = 3600.0
    max_finished_jobs: int = 500

    # Encoding
    audio_bitrate: str = "128k"
    encoder_diagnostic_tail_lines: int = 20
    encoder_probe_timeout_s: float = 10.0

    # Degraded mode (no encoder on host)
    fallback_tick_interval_s: float = 0.5

    # Accounts
    default_quota: int = 10
    quota_reset_days: int = 30

    # Development - DEV_USER bypasses authentication
    dev_mode: bool = True
    dev_user_id: str = "dev-user-123"


@lru_cache
def get_settings() -> Settings:
    return Settings()
