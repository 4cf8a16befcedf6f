"""Per-platform OAuth configuration supplied as data."""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from app.config import Settings, settings
from app.models.account import Platform
from app.services.errors import ConfigurationError, ValidationError


@dataclass(frozen=True)
class PlatformConfig:
    """Endpoints, scopes and credentials for one provider's OAuth flow."""
    platform: Platform
    label: str
    client_id: Optional[str]
    client_secret: Optional[str]
    redirect_uri: Optional[str]
    authorize_url: str
    token_url: str
    scopes: Tuple[str, ...]
    scope_separator: str = " "
    client_id_param: str = "client_id"
    client_secret_param: str = "client_secret"
    authorize_params: Dict[str, str] = field(default_factory=dict)
    consent_params: Dict[str, str] = field(default_factory=dict)
    supports_refresh: bool = True
    tokens_expire: bool = True
    env_names: Tuple[str, str, str] = ("", "", "")

    @property
    def scope(self) -> str:
        return self.scope_separator.join(self.scopes)

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def require_credentials(self) -> None:
        """Raise ConfigurationError unless client id, secret and redirect URI are all set."""
        values = (self.client_id, self.client_secret, self.redirect_uri)
        missing: List[str] = [
            name for name, value in zip(self.env_names, values) if not value
        ]
        if missing:
            raise ConfigurationError(
                f"{self.label} OAuth is not configured. "
                f"Set {', '.join(missing)} in your .env file."
            )


def parse_platform(value) -> Platform:
    """Convert a user-supplied platform tag to Platform."""
    if isinstance(value, Platform):
        return value
    try:
        return Platform(str(value).lower())
    except ValueError:
        valid_platforms = [p.value for p in Platform]
        raise ValidationError(f"Invalid platform '{value}'. Must be one of: {valid_platforms}")


def get_platform_config(platform: Platform, app_settings: Optional[Settings] = None) -> PlatformConfig:
    """Build the OAuth configuration for a platform from settings."""
    s = app_settings or settings

    if platform == Platform.TIKTOK:
        return PlatformConfig(
            platform=platform,
            label="TikTok",
            client_id=s.tiktok_client_key,
            client_secret=s.tiktok_client_secret,
            redirect_uri=s.tiktok_redirect_uri,
            authorize_url="https://www.tiktok.com/v2/auth/authorize/",
            token_url="https://open.tiktokapis.com/v2/oauth/token/",
            scopes=("user.info.basic", "video.upload", "video.publish"),
            scope_separator=",",
            client_id_param="client_key",
            consent_params={"disable_auto_auth": "1"},
            env_names=("TIKTOK_CLIENT_KEY", "TIKTOK_CLIENT_SECRET", "TIKTOK_REDIRECT_URI"),
        )

    if platform == Platform.YOUTUBE:
        return PlatformConfig(
            platform=platform,
            label="YouTube",
            client_id=s.youtube_client_id,
            client_secret=s.youtube_client_secret,
            redirect_uri=s.youtube_redirect_uri,
            authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            scopes=(
                "https://www.googleapis.com/auth/youtube.upload",
                "https://www.googleapis.com/auth/youtube.readonly",
            ),
            authorize_params={
                "access_type": "offline",
                "include_granted_scopes": "true",
                "prompt": "select_account",
            },
            # Force consent so reconnect upgrades granted scopes and returns a refresh token
            consent_params={"prompt": "consent"},
            env_names=("YOUTUBE_CLIENT_ID", "YOUTUBE_CLIENT_SECRET", "YOUTUBE_REDIRECT_URI"),
        )

    if platform == Platform.FACEBOOK:
        version = s.facebook_graph_version
        return PlatformConfig(
            platform=platform,
            label="Facebook",
            client_id=s.facebook_app_id,
            client_secret=s.facebook_app_secret,
            redirect_uri=s.facebook_redirect_uri,
            authorize_url=f"https://www.facebook.com/{version}/dialog/oauth",
            token_url=f"https://graph.facebook.com/{version}/oauth/access_token",
            scopes=(
                "pages_show_list",
                "pages_read_engagement",
                "pages_manage_posts",
                "publish_video",
            ),
            scope_separator=",",
            consent_params={"auth_type": "rerequest"},
            # Page tokens minted from a long-lived user token do not expire
            supports_refresh=False,
            tokens_expire=False,
            env_names=("FACEBOOK_APP_ID", "FACEBOOK_APP_SECRET", "FACEBOOK_REDIRECT_URI"),
        )

    raise ValidationError(f"Unsupported platform: {platform}")


def graph_url(path: str, app_settings: Optional[Settings] = None, video: bool = False) -> str:
    """Graph API URL for the configured version."""
    s = app_settings or settings
    host = "graph-video.facebook.com" if video else "graph.facebook.com"
    return f"https://{host}/{s.facebook_graph_version}/{path.lstrip('/')}"
