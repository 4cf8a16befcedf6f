"""Facebook Page video driver using the Graph API chunked upload phases."""
import asyncio
import logging
from typing import Any, Dict, Optional

from app.models.account import Platform
from app.services.errors import CrossPostError, ProviderRejectedError
from app.services.platforms import graph_url
from app.services.uploaders.base import (
    DriverResult,
    ProgressCallback,
    UploadDriver,
    UploadMetadata,
    UploadSession,
    UploadState,
)

logger = logging.getLogger(__name__)


class FacebookUploader(UploadDriver):
    platform = Platform.FACEBOOK
    label = "Facebook"

    def _videos_url(self, page_id: str) -> str:
        return graph_url(f"{page_id}/videos", self.settings, video=True)

    def _check_graph_error(self, payload: Dict[str, Any], what: str) -> None:
        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderRejectedError(f"Facebook {what} failed: {message}", payload=payload)

    async def _start(self, session: UploadSession, access_token: str) -> Optional[str]:
        response = await self.transport.post(
            self._videos_url(session.account_id),
            data={
                "upload_phase": "start",
                "access_token": access_token,
                "file_size": str(session.video.size),
            },
        )
        self._raise_for_response(response, "upload start")
        payload = self._json(response, "upload start")
        self._check_graph_error(payload, "upload start")

        session_id = payload.get("upload_session_id")
        if not session_id:
            raise ProviderRejectedError(
                "Facebook upload start failed: no upload_session_id returned",
                payload=payload,
            )
        session.session_id = str(session_id)
        session.offset = 0
        logger.info(
            "Facebook upload session %s started for page %s (start_offset=%s)",
            session.session_id,
            session.account_id,
            payload.get("start_offset"),
        )
        return payload.get("video_id")

    async def _transfer(
        self,
        session: UploadSession,
        access_token: str,
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        video = session.video
        chunk_size = self.settings.facebook_chunk_size
        chunk_index = 0

        while session.offset < video.size:
            length = min(chunk_size, video.size - session.offset)
            start = session.offset
            end = start + length - 1
            try:
                try:
                    chunk = await asyncio.to_thread(video.read_range, start, length)
                except OSError as exc:
                    raise ProviderRejectedError(f"Could not read video file: {exc}") from exc
                if len(chunk) != length:
                    raise ProviderRejectedError(
                        f"Video file changed during upload: expected {length} bytes, read {len(chunk)}"
                    )
                response = await self.transport.post(
                    self._videos_url(session.account_id),
                    data={
                        "upload_phase": "transfer",
                        "access_token": access_token,
                        "upload_session_id": session.session_id,
                        "start_offset": str(start),
                    },
                    files={
                        "video_file_chunk": (
                            video.filename or "video.mp4",
                            chunk,
                            "application/octet-stream",
                        )
                    },
                )
                self._raise_for_response(response, "chunk transfer")
                payload = self._json(response, "chunk transfer")
                self._check_graph_error(payload, "chunk transfer")
            except CrossPostError as exc:
                raise ProviderRejectedError(
                    f"Facebook upload aborted at chunk {chunk_index} "
                    f"(bytes {start}-{end}): {exc.message}",
                    payload=exc.payload,
                ) from exc

            # Advance by what was sent; the server's offsets are informational
            session.offset += length
            logger.debug(
                "Facebook session %s chunk %s sent bytes %s-%s (server start_offset=%s end_offset=%s)",
                session.session_id,
                chunk_index,
                start,
                end,
                payload.get("start_offset"),
                payload.get("end_offset"),
            )
            chunk_index += 1
            if progress_callback:
                progress_callback(session.offset, video.size)

    async def _finish(
        self,
        session: UploadSession,
        access_token: str,
        metadata: UploadMetadata,
    ) -> Dict[str, Any]:
        title = metadata.title or ""
        response = await self.transport.post(
            self._videos_url(session.account_id),
            data={
                "upload_phase": "finish",
                "access_token": access_token,
                "upload_session_id": session.session_id,
                "title": title,
                "description": f"{title}\n\n{metadata.description or ''}",
            },
        )
        self._raise_for_response(response, "upload finish")
        payload = self._json(response, "upload finish")
        self._check_graph_error(payload, "upload finish")
        if payload.get("success") is False:
            raise ProviderRejectedError("Facebook upload finish was not accepted", payload=payload)
        return payload

    async def _run(
        self,
        session: UploadSession,
        access_token: str,
        metadata: UploadMetadata,
        progress_callback: Optional[ProgressCallback],
    ) -> DriverResult:
        video_id = await self._start(session, access_token)

        session.advance(UploadState.TRANSFER)
        await self._transfer(session, access_token, progress_callback)

        session.advance(UploadState.FINALIZE)
        payload = await self._finish(session, access_token, metadata)
        return DriverResult(
            success=True,
            message="Uploaded to Facebook successfully!",
            video_id=payload.get("video_id") or video_id,
        )
