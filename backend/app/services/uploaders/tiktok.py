"""TikTok Content Posting API driver: init, single PUT, status polling."""
import logging
from typing import Any, Dict, Optional

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

INIT_URL = "https://open.tiktokapis.com/v2/post/publish/video/init/"
STATUS_URL = "https://open.tiktokapis.com/v2/post/publish/status/fetch/"

COMPLETE_STATUSES = {"PUBLISH_COMPLETE", "SEND_TO_USER_INBOX"}
FAILED_STATUS = "FAILED"


class TikTokUploader(UploadDriver):
    platform = Platform.TIKTOK
    label = "TikTok"

    def _check_api_error(self, payload: Dict[str, Any], what: str) -> None:
        # TikTok answers 200 with error.code "ok" on success
        error = payload.get("error") or {}
        code = error.get("code") if isinstance(error, dict) else error
        if code and code != "ok":
            detail = error.get("message") if isinstance(error, dict) else None
            raise ProviderRejectedError(
                f"TikTok {what} failed: {code}" + (f": {detail}" if detail else ""),
                payload=payload,
            )

    async def _init_upload(
        self,
        session: UploadSession,
        access_token: str,
        metadata: UploadMetadata,
    ) -> None:
        size = session.video.size
        response = await self.transport.post(
            INIT_URL,
            headers=self._auth_headers(
                access_token, **{"Content-Type": "application/json; charset=UTF-8"}
            ),
            json={
                "post_info": {
                    "title": metadata.caption or metadata.title or "",
                    "privacy_level": metadata.privacy or self.settings.tiktok_privacy_level,
                    "disable_duet": False,
                    "disable_comment": False,
                    "disable_stitch": False,
                    "video_cover_timestamp_ms": 1000,
                },
                "source_info": {
                    "source": "FILE_UPLOAD",
                    "video_size": size,
                    "chunk_size": size,
                    "total_chunk_count": 1,
                },
            },
        )
        self._raise_for_response(response, "upload init")
        payload = self._json(response, "upload init")
        self._check_api_error(payload, "upload init")

        data = payload.get("data") or {}
        if not data.get("publish_id") or not data.get("upload_url"):
            raise ProviderRejectedError(
                "TikTok upload init failed: no publish_id or upload_url returned",
                payload=payload,
            )
        session.session_id = data["publish_id"]
        session.upload_url = data["upload_url"]
        logger.info(
            "TikTok upload initialized for account %s publish_id=%s",
            session.account_id,
            session.session_id,
        )

    async def _transfer(
        self,
        session: UploadSession,
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        video = session.video
        tracker = TransferTracker(video.size, progress_callback)
        response = await self.transport.put(
            session.upload_url,
            headers={
                "Content-Type": video.mime_type,
                "Content-Length": str(video.size),
                "Content-Range": f"bytes 0-{video.size - 1}/{video.size}",
            },
            content=video.iter_bytes(tracker),
        )
        self._raise_for_response(response, "video transfer")
        session.offset = video.size

    async def _fetch_status(self, access_token: str, publish_id: str) -> Optional[Dict[str, Any]]:
        """One status fetch. None when the fetch itself failed."""
        try:
            response = await self.transport.post(
                STATUS_URL,
                headers=self._auth_headers(
                    access_token, **{"Content-Type": "application/json; charset=UTF-8"}
                ),
                json={"publish_id": publish_id},
            )
            self._raise_for_response(response, "status fetch")
            payload = self._json(response, "status fetch")
            self._check_api_error(payload, "status fetch")
        except (ProviderRejectedError, UpstreamError) as exc:
            logger.info("TikTok status fetch for publish_id=%s failed: %s", publish_id, exc.message)
            return None
        return payload.get("data") or {}

    async def _poll(self, session: UploadSession, access_token: str) -> DriverResult:
        max_attempts = self.settings.tiktok_poll_max_attempts
        interval = self.settings.tiktok_poll_interval_seconds
        publish_id = session.session_id

        while session.attempts < max_attempts:
            data = await self._fetch_status(access_token, publish_id)
            session.attempts += 1

            if data is not None:
                status = data.get("status")
                logger.debug(
                    "TikTok publish_id=%s status=%s (%s/%s)",
                    publish_id,
                    status,
                    session.attempts,
                    max_attempts,
                )
                if status in COMPLETE_STATUSES:
                    return DriverResult(
                        success=True,
                        message="Uploaded to TikTok successfully!",
                        publish_id=publish_id,
                    )
                if status == FAILED_STATUS:
                    raise ProviderRejectedError(
                        f"TikTok upload failed: {data.get('fail_reason') or 'Unknown'}",
                        payload=data,
                    )

            if session.attempts < max_attempts:
                await self.sleep(interval)

        logger.info(
            "TikTok publish_id=%s still processing after %s polls; reporting soft success",
            publish_id,
            max_attempts,
        )
        return DriverResult(
            success=True,
            message="TikTok upload processing (check your inbox)",
            publish_id=publish_id,
            soft=True,
        )

    async def _run(
        self,
        session: UploadSession,
        access_token: str,
        metadata: UploadMetadata,
        progress_callback: Optional[ProgressCallback],
    ) -> DriverResult:
        await self._init_upload(session, access_token, metadata)

        session.advance(UploadState.TRANSFER)
        await self._transfer(session, progress_callback)

        session.advance(UploadState.POLL)
        return await self._poll(session, access_token)
