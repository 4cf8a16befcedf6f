"""Application configuration."""
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8"
    )

    # App settings
    app_name: str = "CrossPost"
    debug: bool = True

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/crosspost.db"

    # Data directories
    data_dir: Path = Path("./data")
    uploads_dir: Path = Path("./data/uploads")  # Batch video files while jobs run

    # TikTok (Login Kit + Content Posting API)
    tiktok_client_key: Optional[str] = None
    tiktok_client_secret: Optional[str] = None
    tiktok_redirect_uri: Optional[str] = None

    # YouTube (Google OAuth + Data API v3)
    youtube_client_id: Optional[str] = None
    youtube_client_secret: Optional[str] = None
    youtube_redirect_uri: Optional[str] = None

    # Facebook Pages (Graph API)
    facebook_app_id: Optional[str] = None
    facebook_app_secret: Optional[str] = None
    facebook_redirect_uri: Optional[str] = None
    facebook_graph_version: str = "v18.0"

    # OAuth
    oauth_state_ttl_minutes: int = 10
    token_refresh_margin_minutes: int = 5
    oauth_http_timeout_seconds: float = 15.0
    upload_http_timeout_seconds: float = 120.0

    # TikTok upload
    tiktok_privacy_level: str = "SELF_ONLY"  # Sandbox apps may only post privately
    tiktok_poll_interval_seconds: float = 5.0
    tiktok_poll_max_attempts: int = 120  # 120 x 5s = 10 minutes

    # YouTube upload
    youtube_privacy_status: str = "public"  # private, public, unlisted
    youtube_category_id: str = "22"  # People & Blogs

    # Facebook upload
    facebook_chunk_size: int = 4 * 1024 * 1024  # Below the Graph request-body ceiling

    # Frontend
    frontend_url: str = "http://localhost:5173"


settings = Settings()

# Ensure directories exist
settings.data_dir.mkdir(parents=True, exist_ok=True)
settings.uploads_dir.mkdir(parents=True, exist_ok=True)
