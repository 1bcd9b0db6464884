import json
import tempfile
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "FFmpeg API"
    app_version: str = "2.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    port: int = 8080
    log_level: str = "INFO"

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Auth - empty api_key means open mode unless require_api_key is set
    api_key: str = ""
    require_api_key: bool = False

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "*"

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

    # Request / download limits
    max_request_body_mb: int = 200
    max_download_mb: int = 500

    # Job execution (resource exhaustion guards)
    # Maximum number of ffmpeg processes running at once across all requests
    max_concurrent_jobs: int = 4
    # How long a request may wait for a free slot before 503
    queue_timeout_s: float = 30.0
    fetch_timeout_s: float = 120.0
    ffmpeg_timeout_s: float = 600.0
    stream_chunk_size: int = 64 * 1024

    # Scratch files; empty means the platform temp directory
    temp_dir: str = ""

    @computed_field
    @property
    def resolved_temp_dir(self) -> str:
        return self.temp_dir or tempfile.gettempdir()

    # Rate limiting (per client address, sliding window). 0 disables.
    rate_limit_requests: int = 120
    rate_limit_window_s: float = 60.0

    # Path denylist - comma-separated regular expressions
    blocked_path_patterns_raw: str = r"\.env,\.git,wp-admin,wp-login,\.php$,phpmyadmin,/\.aws"

    @computed_field
    @property
    def blocked_path_patterns(self) -> list[str]:
        return [p.strip() for p in self.blocked_path_patterns_raw.split(",") if p.strip()]

    # Self healthcheck
    self_base_url: str = ""
    healthcheck_mode: Literal["batched", "sequential"] = "batched"
    healthcheck_batch_size: int = 4
    healthcheck_batch_delay_s: float = 1.5
    healthcheck_probe_delay_s: float = 0.5
    healthcheck_timeout_s: float = 300.0
    sample_video_url: str = (
        "http://commondatastorage.googleapis.com/gtv-videos-bucket/sample/ForBiggerFun.mp4"
    )
    sample_video_url_alt: str = (
        "http://commondatastorage.googleapis.com/gtv-videos-bucket/sample/ForBiggerJoyrides.mp4"
    )
    sample_image_url: str = "https://www.gstatic.com/webp/gallery/1.png"

    @computed_field
    @property
    def probe_base_url(self) -> str:
        return (self.self_base_url or f"http://127.0.0.1:{self.port}").rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()
