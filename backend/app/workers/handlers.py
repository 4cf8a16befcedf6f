"""Job handlers for background tasks."""
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from app.db.database import async_session_maker
from app.models.upload_job import UploadJob
from app.services.http_transport import HttpTransport
from app.services.upload_service import SelectionResult, UploadSelection, UploadService
from app.services.uploaders import VideoFile, build_drivers

logger = logging.getLogger(__name__)


async def handle_upload(
    job_id: int,
    progress_callback: Callable,
    session_factory=None,
    transport: Optional[HttpTransport] = None,
    sleep: Optional[Callable] = None,
    **kwargs
) -> List[Dict[str, Any]]:
    """
    Handle a multi-account upload job.

    Args:
        job_id: Upload job ID
        progress_callback: Async callback for progress updates
        session_factory: Session factory (defaults to the app's)
        transport: HTTP transport shared by the guard and drivers
        sleep: Sleep used by polling drivers

    Returns:
        One result dict per selection
    """
    session_factory = session_factory or async_session_maker

    async with session_factory() as session:
        job = await session.get(UploadJob, job_id)
        if not job:
            raise ValueError(f"Upload job {job_id} not found")

        video_path = Path(job.video_path)
        filename = job.video_filename
        mime_type = job.video_mime_type or "video/mp4"
        raw_selections = json.loads(job.selections)

    try:
        video = VideoFile(
            path=video_path,
            size=video_path.stat().st_size if video_path.exists() else 0,
            mime_type=mime_type,
            filename=filename or video_path.name,
        )
        selections = [UploadSelection.from_dict(item) for item in raw_selections]
        total = len(selections)

        await progress_callback(0, f"Uploading to {total} account(s)...", results=[])

        transport = transport or HttpTransport()
        async with session_factory() as session:

            async def report(results: List[SelectionResult]):
                # Release the write lock before the job row is updated in another session
                await session.commit()
                done = len(results)
                await progress_callback(
                    done / total * 100 if total else 100,
                    f"Processed {done}/{total} account(s)",
                    results=[result.to_dict() for result in results],
                )

            service = UploadService(
                session,
                transport=transport,
                drivers=build_drivers(transport, sleep=sleep),
            )
            results = await service.upload_to_selections(
                video,
                selections,
                progress_callback=report,
            )
            await session.commit()
    finally:
        if video_path.exists():
            video_path.unlink()
            logger.debug(f"Removed temporary upload {video_path}")

    succeeded = sum(1 for result in results if result.success)
    logger.info(f"Upload job {job_id}: {succeeded}/{len(results)} selections succeeded")
    return [result.to_dict() for result in results]
