"""YouTube Data API resumable upload driver."""
import logging
from typing import Optional

from app.models.account import Platform
from app.services.errors import ProviderRejectedError, UpstreamError
from app.services.uploaders.base import (
    DriverResult,
    ProgressCallback,
    TransferTracker,
    UploadDriver,
    UploadMetadata,
    UploadSession,
    UploadState,
)

logger = logging.getLogger(__name__)

RESUMABLE_UPLOAD_URL = (
    "https://www.googleapis.com/upload/youtube/v3/videos"
    "?uploadType=resumable&part=snippet,status"
)


class YouTubeUploader(UploadDriver):
    platform = Platform.YOUTUBE
    label = "YouTube"

    async def _create_session(
        self,
        session: UploadSession,
        access_token: str,
        metadata: UploadMetadata,
    ) -> None:
        video = session.video
        body = {
            "snippet": {
                "title": (metadata.title or "")[:100],  # YouTube max title length
                "description": metadata.description[:5000],
                "tags": metadata.tags[:500],
                "categoryId": self.settings.youtube_category_id,
            },
            "status": {
                "privacyStatus": metadata.privacy or self.settings.youtube_privacy_status,
                "selfDeclaredMadeForKids": False,
            },
        }
        response = await self.transport.post(
            RESUMABLE_UPLOAD_URL,
            headers=self._auth_headers(
                access_token,
                **{
                    "Content-Type": "application/json",
                    "X-Upload-Content-Length": str(video.size),
                    "X-Upload-Content-Type": video.mime_type,
                },
            ),
            json=body,
        )
        self._raise_for_response(response, "upload session")

        upload_url = response.headers.get("Location")
        if not upload_url:
            raise ProviderRejectedError("YouTube upload session failed: no upload URL received")
        session.upload_url = upload_url

    async def _run(
        self,
        session: UploadSession,
        access_token: str,
        metadata: UploadMetadata,
        progress_callback: Optional[ProgressCallback],
    ) -> DriverResult:
        await self._create_session(session, access_token, metadata)

        session.advance(UploadState.TRANSFER)
        video = session.video
        tracker = TransferTracker(video.size, progress_callback)
        try:
            response = await self.transport.put(
                session.upload_url,
                headers={
                    "Content-Type": video.mime_type,
                    "Content-Length": str(video.size),
                },
                content=video.iter_bytes(tracker),
            )
        except UpstreamError as exc:
            if exc.network and tracker.complete:
                # Every byte reached the server; the connection dropped on the response
                logger.info(
                    "YouTube upload for account %s lost its response after %s bytes; "
                    "treating as complete",
                    session.account_id,
                    tracker.sent,
                )
                return DriverResult(
                    success=True,
                    message="Uploaded to YouTube (processing)",
                    soft=True,
                )
            raise

        self._raise_for_response(response, "video upload")
        session.advance(UploadState.FINALIZE)
        result = self._json(response, "video upload")
        video_id = result.get("id")
        return DriverResult(
            success=True,
            message="Uploaded to YouTube successfully!",
            video_id=video_id,
        )
