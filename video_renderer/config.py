import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Video Renderer"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Server (Railway / Cloud Run inject PORT)
    host: str = "0.0.0.0"
    port: int = 8080

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:5173,http://localhost:3000"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string or JSON array."""
        v = self.cors_origins_raw
        # Try JSON first
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # Publishing: "upload" returns a storage URL, "stream" returns the MP4 bytes
    publish_mode: Literal["upload", "stream"] = "upload"

    # Object storage
    storage_backend: Literal["s3", "gcs", "local"] = "local"
    storage_key_prefix: str = ""
    public_base_url: str = ""  # Overrides the backend's default public URL

    # AWS S3 (credentials come from the standard AWS_* environment variables)
    s3_bucket_name: str = ""
    aws_region: str = "us-west-2"
    s3_acl: str = "public-read"  # Empty string disables the ACL header

    # Google Cloud Storage
    gcs_bucket_name: str = ""
    gcs_project_id: str = ""

    # Local storage for development
    local_storage_path: str = "/tmp/video-renderer-storage"

    # Workspaces
    workspace_root: str = "/tmp/video-renderer-work"
    workspace_prefix: str = "render-"

    # Asset download
    fetch_timeout_s: float = 120.0
    fetch_concurrency: int = 4
    fetch_chunk_size: int = 1024 * 1024
    max_asset_bytes: int = 1024 * 1024 * 1024

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    encode_timeout_s: float = 600.0
    terminate_grace_s: float = 5.0
    max_concurrent_renders: int = 0  # 0 = unlimited

    # Text overlay rendering
    caption_font_size: int = 50
    caption_font_color: str = "white"
    caption_font_file: str = ""
    caption_box_color: str = "black@0.5"
    caption_box_border: int = 10
    caption_bottom_margin: int = 50

    # Image sequence rendering
    slideshow_width: int = 1080
    slideshow_height: int = 1920
    slideshow_fps: int = 30
    seconds_per_image: float = 3.0
    slideshow_preset: str = "ultrafast"

    # Streamed responses
    stream_chunk_size: int = 64 * 1024


@lru_cache
def get_settings() -> Settings:
    return Settings()
