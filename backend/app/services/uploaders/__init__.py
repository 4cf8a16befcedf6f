"""Upload drivers keyed by platform."""
from typing import Dict, Optional

from app.config import Settings
from app.models.account import Platform
from app.services.http_transport import HttpTransport
from app.services.uploaders.base import (
    DriverResult,
    SleepFunc,
    UploadDriver,
    UploadMetadata,
    UploadState,
    VideoFile,
)
from app.services.uploaders.facebook import FacebookUploader
from app.services.uploaders.tiktok import TikTokUploader
from app.services.uploaders.youtube import YouTubeUploader

DRIVER_CLASSES = {
    Platform.TIKTOK: TikTokUploader,
    Platform.YOUTUBE: YouTubeUploader,
    Platform.FACEBOOK: FacebookUploader,
}


def build_drivers(
    transport: Optional[HttpTransport] = None,
    app_settings: Optional[Settings] = None,
    sleep: Optional[SleepFunc] = None,
) -> Dict[Platform, UploadDriver]:
    """One driver per platform sharing a transport."""
    transport = transport or HttpTransport()
    return {
        platform: driver_class(transport=transport, app_settings=app_settings, sleep=sleep)
        for platform, driver_class in DRIVER_CLASSES.items()
    }


__all__ = [
    "DRIVER_CLASSES",
    "DriverResult",
    "FacebookUploader",
    "TikTokUploader",
    "UploadDriver",
    "UploadMetadata",
    "UploadState",
    "VideoFile",
    "YouTubeUploader",
    "build_drivers",
]
