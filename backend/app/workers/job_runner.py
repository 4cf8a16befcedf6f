"""Background job runner using asyncio."""
import asyncio
import json
import logging
import traceback
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from app.db.database import async_session_maker
from app.models.upload_job import UploadJob, UploadJobStatus

logger = logging.getLogger(__name__)


class JobRunner:
    """Async background job runner."""

    def __init__(self, session_factory=None):
        self._running_jobs: Dict[int, asyncio.Task] = {}
        self._job_handlers: Dict[str, Callable] = {}
        self._session_factory = session_factory or async_session_maker

    def register_handler(self, job_type: str, handler: Callable):
        """Register a handler for a job type."""
        self._job_handlers[job_type] = handler

    async def start_job(
        self,
        job_id: int,
        job_type: str,
        **kwargs
    ) -> bool:
        """
        Start a background job.

        Args:
            job_id: Database ID of the upload job
            job_type: Type of job to run
            **kwargs: Arguments to pass to the job handler

        Returns:
            True if job started successfully
        """
        if job_id in self._running_jobs:
            logger.warning(f"Job {job_id} is already running")
            return False

        handler = self._job_handlers.get(job_type)
        if not handler:
            logger.error(f"No handler registered for job type: {job_type}")
            return False

        # Create task
        task = asyncio.create_task(
            self._run_job(job_id, handler, **kwargs)
        )
        self._running_jobs[job_id] = task

        return True

    async def _run_job(
        self,
        job_id: int,
        handler: Callable,
        **kwargs
    ):
        """Run a job with error handling and status updates."""
        try:
            async with self._session_factory() as session:
                job = await session.get(UploadJob, job_id)
                if not job:
                    logger.error(f"Job {job_id} not found")
                    return

                # Update job to running
                job.status = UploadJobStatus.RUNNING
                job.started_at = datetime.utcnow()
                job.message = "Starting..."
                await session.commit()

            # Create progress callback
            async def update_progress(
                progress: float,
                message: Optional[str] = None,
                results: Optional[List[Dict[str, Any]]] = None,
            ):
                async with self._session_factory() as session:
                    job = await session.get(UploadJob, job_id)
                    if job:
                        job.progress = min(100, max(0, progress))
                        if message:
                            job.message = message
                        if results is not None:
                            job.results = json.dumps(results)
                        await session.commit()

            # Run the handler
            result = await handler(
                job_id=job_id,
                progress_callback=update_progress,
                **kwargs
            )

            # Update job to completed
            async with self._session_factory() as session:
                job = await session.get(UploadJob, job_id)
                if job:
                    job.status = UploadJobStatus.COMPLETED
                    job.progress = 100
                    job.message = "Completed"
                    job.completed_at = datetime.utcnow()
                    if result is not None:
                        job.results = json.dumps(result)
                    await session.commit()

            logger.info(f"Job {job_id} completed")

        except asyncio.CancelledError:
            async with self._session_factory() as session:
                job = await session.get(UploadJob, job_id)
                if job:
                    job.status = UploadJobStatus.CANCELLED
                    job.message = "Job cancelled"
                    job.completed_at = datetime.utcnow()
                    await session.commit()
            logger.info(f"Job {job_id} was cancelled")

        except Exception as e:
            error_msg = str(e)
            error_trace = traceback.format_exc()
            logger.error(f"Job {job_id} failed: {error_msg}\n{error_trace}")

            async with self._session_factory() as session:
                job = await session.get(UploadJob, job_id)
                if job:
                    job.status = UploadJobStatus.FAILED
                    job.message = f"Failed: {error_msg}"
                    job.error = error_trace
                    job.completed_at = datetime.utcnow()
                    await session.commit()

        finally:
            # Remove from running jobs
            self._running_jobs.pop(job_id, None)

    async def cancel_job(self, job_id: int) -> bool:
        """Cancel a running job."""
        task = self._running_jobs.get(job_id)
        if task:
            task.cancel()
            return True
        return False

    def is_job_running(self, job_id: int) -> bool:
        """Check if a job is currently running."""
        return job_id in self._running_jobs

    async def wait_for(self, job_id: int) -> None:
        """Wait until a running job finishes."""
        task = self._running_jobs.get(job_id)
        if task:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self):
        """Cancel all running jobs."""
        for task in self._running_jobs.values():
            task.cancel()

        if self._running_jobs:
            await asyncio.gather(
                *self._running_jobs.values(),
                return_exceptions=True
            )

        self._running_jobs.clear()


# Global job runner instance
job_runner = JobRunner()
