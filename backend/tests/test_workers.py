"""Tests for the background upload job."""
import json
from datetime import datetime, timedelta

import pytest

from app.models.account import Account, AuthStatus, Platform
from app.models.upload_job import UploadJob, UploadJobStatus
from app.workers.handlers import handle_upload
from app.workers.job_runner import JobRunner


async def _queue_job(session_factory, video_path, selections):
    async with session_factory() as session:
        session.add(
            Account(
                platform=Platform.YOUTUBE,
                external_account_id="UC1",
                display_name="Channel",
                access_token="yt-token",
                token_expires_at=datetime.utcnow() + timedelta(hours=1),
                auth_status=AuthStatus.CONNECTED,
            )
        )
        job = UploadJob(
            status=UploadJobStatus.PENDING,
            video_path=str(video_path),
            video_filename="clip.mp4",
            video_mime_type="video/mp4",
            selections=json.dumps(selections),
        )
        session.add(job)
        await session.commit()
        return job.id


@pytest.mark.asyncio
async def test_upload_job_records_results_and_removes_file(
    session_factory, transport, fake_response, make_video, no_sleep, oauth_settings
):
    video_path = make_video(4096)
    job_id = await _queue_job(
        session_factory,
        video_path,
        [
            {"platform": "youtube", "account_id": "UC1", "title": "Title"},
            {"platform": "tiktok", "account_id": "missing", "caption": "hi"},
        ],
    )
    transport.queue(
        fake_response(200, {}, headers={"Location": "https://upload.youtube.test/s"}),
        fake_response(200, {"id": "vid-1"}),
    )

    runner = JobRunner(session_factory=session_factory)
    runner.register_handler("upload", handle_upload)
    assert await runner.start_job(
        job_id,
        "upload",
        session_factory=session_factory,
        transport=transport,
        sleep=no_sleep,
    )
    await runner.wait_for(job_id)

    async with session_factory() as session:
        job = await session.get(UploadJob, job_id)
        account = (
            await session.execute(Account.__table__.select().where(Account.external_account_id == "UC1"))
        ).first()

    assert job.status == UploadJobStatus.COMPLETED, job.error
    assert job.progress == 100
    results = job.result_list()
    assert [r["status"] for r in results] == ["success", "error"]
    assert results[0]["video_id"] == "vid-1"
    assert "not linked" in results[1]["message"]
    assert account.last_upload_at is not None
    assert not video_path.exists()


@pytest.mark.asyncio
async def test_invalid_job_fails_and_still_removes_file(session_factory, transport, make_video, oauth_settings):
    video_path = make_video(100)
    job_id = await _queue_job(
        session_factory,
        video_path,
        [{"platform": "youtube", "account_id": "UC1"}],
    )

    runner = JobRunner(session_factory=session_factory)
    runner.register_handler("upload", handle_upload)
    await runner.start_job(job_id, "upload", session_factory=session_factory, transport=transport)
    await runner.wait_for(job_id)

    async with session_factory() as session:
        job = await session.get(UploadJob, job_id)

    assert job.status == UploadJobStatus.FAILED
    assert "title is required" in job.message
    assert transport.calls == []
    assert not video_path.exists()


@pytest.mark.asyncio
async def test_unknown_job_type_is_not_started(session_factory):
    runner = JobRunner(session_factory=session_factory)

    assert await runner.start_job(1, "transcode") is False
    assert runner.is_job_running(1) is False
