"""Multi-account upload orchestration."""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings
from app.models.account import Platform
from app.services.account_service import AccountService
from app.services.errors import CrossPostError, ReauthRequiredError, ValidationError
from app.services.http_transport import HttpTransport
from app.services.platforms import get_platform_config, parse_platform
from app.services.token_guard import TokenFreshnessGuard
from app.services.uploaders import UploadDriver, UploadMetadata, VideoFile, build_drivers

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


def _parse_tags(value: Any) -> List[str]:
    """Tags arrive as a list or a comma separated string."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(tag).strip() for tag in value if str(tag).strip()]


@dataclass
class UploadSelection:
    """One (platform, account) target with its per-post metadata."""
    platform: Platform
    account_id: str
    title: Optional[str] = None
    description: str = ""
    caption: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    privacy: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadSelection":
        if not isinstance(data, dict):
            raise ValidationError("Each selection must be an object")
        return cls(
            platform=parse_platform(data.get("platform")),
            account_id=str(data.get("account_id") or "").strip(),
            title=data.get("title"),
            description=data.get("description") or "",
            caption=data.get("caption"),
            tags=_parse_tags(data.get("tags")),
            privacy=data.get("privacy"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "account_id": self.account_id,
            "title": self.title,
            "description": self.description,
            "caption": self.caption,
            "tags": self.tags,
            "privacy": self.privacy,
        }


@dataclass
class SelectionResult:
    """Outcome of one selection."""
    platform: Platform
    account_id: str
    status: str
    message: str
    reauth_required: bool = False
    video_id: Optional[str] = None
    publish_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "account_id": self.account_id,
            "status": self.status,
            "message": self.message,
            "reauth_required": self.reauth_required,
            "video_id": self.video_id,
            "publish_id": self.publish_id,
        }


ResultsCallback = Callable[[List[SelectionResult]], Awaitable[None]]


def metadata_for(selection: UploadSelection) -> UploadMetadata:
    """Map a selection's form fields onto driver metadata."""
    if selection.platform == Platform.TIKTOK:
        return UploadMetadata(
            title=selection.caption,
            caption=selection.caption,
            privacy=selection.privacy,
        )
    return UploadMetadata(
        title=selection.title,
        description=selection.description or "",
        tags=list(selection.tags),
        privacy=selection.privacy,
    )


def validate_selections(video: VideoFile, selections: List[UploadSelection]) -> None:
    """Reject a batch before any network call. Raises ValidationError."""
    if not selections:
        raise ValidationError("Select at least one account to upload to")

    if not video.path.exists():
        raise ValidationError(f"Video file not found: {video.filename or video.path.name}")
    if video.path.stat().st_size == 0:
        raise ValidationError("Video file is empty")

    for index, selection in enumerate(selections):
        label = f"Selection {index + 1} ({selection.platform.value})"
        if not selection.account_id:
            raise ValidationError(f"{label}: account_id is required")
        if selection.platform == Platform.TIKTOK and not (selection.caption or "").strip():
            raise ValidationError(f"{label}: a caption is required for TikTok")
        if selection.platform in (Platform.YOUTUBE, Platform.FACEBOOK) and not (
            selection.title or ""
        ).strip():
            raise ValidationError(f"{label}: a title is required")


class UploadService:
    """Uploads one video to every selected account, one after another."""

    def __init__(
        self,
        db: AsyncSession,
        transport: Optional[HttpTransport] = None,
        drivers: Optional[Dict[Platform, UploadDriver]] = None,
        guard: Optional[TokenFreshnessGuard] = None,
        app_settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = app_settings or settings
        self.transport = transport or HttpTransport()
        self.drivers = drivers or build_drivers(self.transport, self.settings)
        self.guard = guard or TokenFreshnessGuard(
            db,
            transport=self.transport,
            margin_minutes=self.settings.token_refresh_margin_minutes,
        )
        self._accounts = AccountService(db)

    async def upload_to_selections(
        self,
        video: VideoFile,
        selections: List[UploadSelection],
        progress_callback: Optional[ResultsCallback] = None,
    ) -> List[SelectionResult]:
        """
        Upload the video to each selection in order.

        Validation failures raise before anything is sent. After that, a
        failing selection only produces an error result; the batch always
        runs to the end and returns one result per selection.
        """
        validate_selections(video, selections)

        results: List[SelectionResult] = []
        for selection in selections:
            try:
                result = await self._upload_one(video, selection)
            except ReauthRequiredError as exc:
                result = self._error(selection, exc.message, reauth_required=True)
            except CrossPostError as exc:
                result = self._error(selection, exc.message)
            except Exception as exc:
                logger.exception(
                    "Unexpected error uploading to %s account %s",
                    selection.platform.value,
                    selection.account_id,
                )
                result = self._error(selection, f"Error: {exc}")

            results.append(result)
            logger.info(
                "%s account %s: %s (%s)",
                selection.platform.value,
                selection.account_id,
                result.status,
                result.message,
            )
            if progress_callback:
                await progress_callback(list(results))

        return results

    def _error(
        self,
        selection: UploadSelection,
        message: str,
        reauth_required: bool = False,
    ) -> SelectionResult:
        return SelectionResult(
            platform=selection.platform,
            account_id=selection.account_id,
            status=STATUS_ERROR,
            message=message,
            reauth_required=reauth_required,
        )

    async def _upload_one(self, video: VideoFile, selection: UploadSelection) -> SelectionResult:
        account = await self._accounts.get_account(selection.platform, selection.account_id)
        if not account:
            return self._error(
                selection,
                f"{selection.platform.value} account {selection.account_id} is not linked",
            )

        config = get_platform_config(selection.platform, self.settings)
        try:
            access_token = await self.guard.ensure_fresh(account, config)
        finally:
            # Refreshed or expired credentials are committed before the transfer starts
            await self.db.commit()

        driver = self.drivers[selection.platform]
        outcome = await driver.upload(
            access_token,
            account.external_account_id,
            video,
            metadata_for(selection),
        )
        if not outcome.success:
            return self._error(selection, outcome.error or f"{config.label} upload failed")

        await self._accounts.mark_uploaded(account)
        return SelectionResult(
            platform=selection.platform,
            account_id=selection.account_id,
            status=STATUS_SUCCESS,
            message=outcome.message or f"Uploaded to {config.label}",
            video_id=outcome.video_id,
            publish_id=outcome.publish_id,
        )
