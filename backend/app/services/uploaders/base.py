"""Shared pieces of the per-platform upload drivers."""
import asyncio
import enum
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from app.config import Settings, settings
from app.models.account import Platform
from app.services.errors import CrossPostError, ProviderRejectedError, UpstreamError
from app.services.http_transport import HttpTransport, extract_error_detail, response_payload

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 1024 * 1024

ProgressCallback = Callable[[int, int], None]
SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class VideoFile:
    """A video on local disk, read by byte range or streamed."""
    path: Path
    size: int
    mime_type: str = "video/mp4"
    filename: Optional[str] = None

    @classmethod
    def from_path(
        cls,
        path: Union[str, Path],
        mime_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> "VideoFile":
        path = Path(path)
        guessed, _ = mimetypes.guess_type(path.name)
        return cls(
            path=path,
            size=path.stat().st_size,
            mime_type=mime_type or guessed or "video/mp4",
            filename=filename or path.name,
        )

    def read_range(self, start: int, length: int) -> bytes:
        """Read exactly `length` bytes starting at `start` (fewer only at EOF)."""
        with open(self.path, "rb") as video_file:
            video_file.seek(start)
            return video_file.read(length)

    async def iter_bytes(
        self,
        tracker: "TransferTracker",
        chunk_size: int = STREAM_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        """Stream the file, counting a chunk as sent once the consumer asks for the next one."""
        with open(self.path, "rb") as video_file:
            while True:
                chunk = video_file.read(chunk_size)
                if not chunk:
                    break
                yield chunk
                tracker.advance(len(chunk))


class TransferTracker:
    """Counts bytes handed to the transport and reports progress."""

    def __init__(self, total: int, callback: Optional[ProgressCallback] = None):
        self.total = total
        self.sent = 0
        self._callback = callback

    def advance(self, count: int) -> None:
        self.sent += count
        if self._callback:
            self._callback(self.sent, self.total)

    @property
    def complete(self) -> bool:
        return self.sent >= self.total


@dataclass
class UploadMetadata:
    """Per-post metadata. Which fields matter depends on the platform."""
    title: Optional[str] = None
    description: str = ""
    caption: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    privacy: Optional[str] = None


class UploadState(str, enum.Enum):
    INIT = "init"
    TRANSFER = "transfer"
    FINALIZE = "finalize"
    POLL = "poll"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class UploadSession:
    """Progress of one upload through the driver state machine."""
    platform: Platform
    account_id: str
    video: VideoFile
    state: UploadState = UploadState.INIT
    session_id: Optional[str] = None
    upload_url: Optional[str] = None
    offset: int = 0
    attempts: int = 0

    def advance(self, state: UploadState) -> None:
        logger.debug(
            "%s upload for account %s: %s -> %s",
            self.platform.value,
            self.account_id,
            self.state.value,
            state.value,
        )
        self.state = state


@dataclass
class DriverResult:
    """Outcome of one driver run."""
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    video_id: Optional[str] = None
    publish_id: Optional[str] = None
    soft: bool = False
    payload: Optional[Any] = None


class UploadDriver:
    """
    Base class for platform upload drivers.

    Subclasses implement `_run`, raising CrossPostError subclasses on
    provider or transport failures; `upload` turns those into a failed
    DriverResult.
    """

    platform: Platform
    label: str = ""

    def __init__(
        self,
        transport: Optional[HttpTransport] = None,
        app_settings: Optional[Settings] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        self.transport = transport or HttpTransport()
        self.settings = app_settings or settings
        self.sleep = sleep or asyncio.sleep

    async def upload(
        self,
        access_token: str,
        account_id: str,
        video: VideoFile,
        metadata: UploadMetadata,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> DriverResult:
        session = UploadSession(platform=self.platform, account_id=account_id, video=video)
        logger.info(
            "Starting %s upload for account %s (%s bytes)",
            self.platform.value,
            account_id,
            video.size,
        )
        try:
            result = await self._run(session, access_token, metadata, progress_callback)
        except CrossPostError as exc:
            session.advance(UploadState.FAILED)
            logger.warning(
                "%s upload for account %s failed: %s",
                self.platform.value,
                account_id,
                exc.message,
            )
            return DriverResult(success=False, error=exc.message, payload=exc.payload)

        session.advance(UploadState.COMPLETE)
        logger.info(
            "%s upload for account %s finished (soft=%s)",
            self.platform.value,
            account_id,
            result.soft,
        )
        return result

    async def _run(
        self,
        session: UploadSession,
        access_token: str,
        metadata: UploadMetadata,
        progress_callback: Optional[ProgressCallback],
    ) -> DriverResult:
        raise NotImplementedError

    def _auth_headers(self, access_token: str, **extra: str) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {access_token}"}
        headers.update(extra)
        return headers

    def _raise_for_response(self, response: httpx.Response, what: str) -> None:
        """Raise the classified error for a non-2xx provider response."""
        if 200 <= response.status_code < 300:
            return
        message = f"{self.label} {what} failed: {extract_error_detail(response)}"
        if response.status_code >= 500:
            raise UpstreamError(message, payload=response_payload(response))
        raise ProviderRejectedError(message, payload=response_payload(response))

    def _json(self, response: httpx.Response, what: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderRejectedError(
                f"{self.label} {what} failed: invalid provider response",
                payload=response.text,
            ) from exc
        if not isinstance(payload, dict):
            raise ProviderRejectedError(
                f"{self.label} {what} failed: invalid provider response",
                payload=payload,
            )
        return payload
