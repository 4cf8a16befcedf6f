"""Tests for multi-account upload orchestration."""
from datetime import datetime, timedelta

import pytest

from app.models.account import Account, AuthStatus, Platform
from app.models.oauth_state import OAuthState
from app.services.account_service import AccountService
from app.services.errors import ValidationError
from app.services.oauth_ledger import OAuthStateLedger
from app.services.upload_service import UploadSelection, UploadService, metadata_for
from app.services.uploaders import DriverResult, VideoFile, build_drivers


class _StubDriver:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    async def upload(self, access_token, account_id, video, metadata, progress_callback=None):
        self.calls.append((access_token, account_id, metadata))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _drivers(tiktok=None, youtube=None, facebook=None):
    ok = DriverResult(success=True, message="ok", video_id="v1")
    return {
        Platform.TIKTOK: _StubDriver(tiktok or ok),
        Platform.YOUTUBE: _StubDriver(youtube or ok),
        Platform.FACEBOOK: _StubDriver(facebook or ok),
    }


async def _link(db_session, platform, external_id, **overrides):
    values = dict(
        platform=platform,
        external_account_id=external_id,
        display_name=external_id,
        access_token=f"{external_id}-token",
        refresh_token=None,
        token_expires_at=datetime.utcnow() + timedelta(hours=1),
        auth_status=AuthStatus.CONNECTED,
    )
    values.update(overrides)
    account = Account(**values)
    db_session.add(account)
    await db_session.flush()
    return account


def _selections():
    return [
        UploadSelection(platform=Platform.TIKTOK, account_id="open-1", caption="caption"),
        UploadSelection(platform=Platform.YOUTUBE, account_id="UC1", title="Title", tags=["x"]),
        UploadSelection(platform=Platform.FACEBOOK, account_id="page-1", title="Title", description="d"),
    ]


@pytest.fixture
def video(make_video):
    return VideoFile.from_path(make_video(256))


@pytest.mark.asyncio
async def test_all_selections_succeed(db_session, transport, video, oauth_settings):
    await _link(db_session, Platform.TIKTOK, "open-1")
    await _link(db_session, Platform.YOUTUBE, "UC1")
    await _link(db_session, Platform.FACEBOOK, "page-1", token_expires_at=None)
    drivers = _drivers()
    service = UploadService(db_session, transport=transport, drivers=drivers)

    results = await service.upload_to_selections(video, _selections())

    assert [r.status for r in results] == ["success", "success", "success"]
    assert [r.platform for r in results] == [Platform.TIKTOK, Platform.YOUTUBE, Platform.FACEBOOK]
    assert drivers[Platform.TIKTOK].calls[0][0] == "open-1-token"
    assert drivers[Platform.FACEBOOK].calls[0][1] == "page-1"
    assert transport.calls == []

    account = await service._accounts.get_account(Platform.YOUTUBE, "UC1")
    assert account.last_upload_at is not None


@pytest.mark.asyncio
async def test_failing_selection_does_not_stop_batch(db_session, transport, video, oauth_settings):
    await _link(db_session, Platform.TIKTOK, "open-1")
    await _link(db_session, Platform.YOUTUBE, "UC1")
    await _link(db_session, Platform.FACEBOOK, "page-1", token_expires_at=None)
    drivers = _drivers(youtube=RuntimeError("connection reset"))
    progress = []

    async def on_progress(results):
        progress.append([r.status for r in results])

    service = UploadService(db_session, transport=transport, drivers=drivers)
    results = await service.upload_to_selections(video, _selections(), progress_callback=on_progress)

    assert len(results) == 3
    assert [r.status for r in results] == ["success", "error", "success"]
    assert "connection reset" in results[1].message
    assert results[1].reauth_required is False
    assert progress == [["success"], ["success", "error"], ["success", "error", "success"]]


@pytest.mark.asyncio
async def test_driver_failure_becomes_error_result(db_session, transport, video, oauth_settings):
    await _link(db_session, Platform.TIKTOK, "open-1")
    drivers = _drivers(tiktok=DriverResult(success=False, error="TikTok upload failed: spam_risk"))
    service = UploadService(db_session, transport=transport, drivers=drivers)

    results = await service.upload_to_selections(video, _selections()[:1])

    assert results[0].status == "error"
    assert results[0].message == "TikTok upload failed: spam_risk"


@pytest.mark.asyncio
async def test_unlinked_account_is_an_error_result(db_session, transport, video, oauth_settings):
    service = UploadService(db_session, transport=transport, drivers=_drivers())

    results = await service.upload_to_selections(video, _selections()[1:2])

    assert results[0].status == "error"
    assert "not linked" in results[0].message


@pytest.mark.asyncio
async def test_refresh_rejection_flags_reauth(db_session, transport, fake_response, video, oauth_settings):
    await _link(
        db_session,
        Platform.YOUTUBE,
        "UC1",
        refresh_token="refresh-1",
        token_expires_at=datetime.utcnow() + timedelta(minutes=2),
    )
    await _link(db_session, Platform.FACEBOOK, "page-1", token_expires_at=None)
    transport.queue(fake_response(400, {"error": "invalid_grant", "error_description": "Token has been revoked"}))
    drivers = _drivers()
    service = UploadService(db_session, transport=transport, drivers=drivers)

    results = await service.upload_to_selections(video, _selections()[1:])

    assert results[0].status == "error"
    assert results[0].reauth_required is True
    assert drivers[Platform.YOUTUBE].calls == []
    assert results[1].status == "success"
    assert len(transport.calls) == 1

    account = await service._accounts.get_account(Platform.YOUTUBE, "UC1")
    assert account.auth_status == AuthStatus.EXPIRED


@pytest.mark.asyncio
async def test_stale_token_is_refreshed_before_upload(db_session, transport, fake_response, video, oauth_settings):
    await _link(
        db_session,
        Platform.TIKTOK,
        "open-1",
        refresh_token="tt-refresh",
        token_expires_at=datetime.utcnow() + timedelta(minutes=4),
    )
    transport.queue(fake_response(200, {"access_token": "tt-fresh", "expires_in": 86400}))
    drivers = _drivers()
    service = UploadService(db_session, transport=transport, drivers=drivers)

    results = await service.upload_to_selections(video, _selections()[:1])

    assert results[0].status == "success"
    assert drivers[Platform.TIKTOK].calls[0][0] == "tt-fresh"


@pytest.mark.asyncio
async def test_refreshed_token_is_committed_before_transfer(
    db_session, session_factory, transport, fake_response, video, oauth_settings
):
    await _link(
        db_session,
        Platform.YOUTUBE,
        "UC1",
        refresh_token="yt-refresh",
        token_expires_at=datetime.utcnow() - timedelta(minutes=1),
    )
    await db_session.commit()
    seen_during_transfer = {}

    async def _during_put(method, url, kwargs):
        async with session_factory() as other:
            stored = await AccountService(other).get_account(Platform.YOUTUBE, "UC1")
            seen_during_transfer["token"] = stored.access_token
            grant = await OAuthStateLedger(other).create(Platform.TIKTOK)
            await other.commit()
            seen_during_transfer["state"] = grant.state
        return fake_response(200, {"id": "vid-1"})

    transport.queue(
        fake_response(200, {"access_token": "yt-fresh", "expires_in": 3600}),
        fake_response(200, {}, headers={"Location": "https://upload.youtube.test/s"}),
        _during_put,
    )
    drivers = build_drivers(transport)
    service = UploadService(db_session, transport=transport, drivers=drivers)

    results = await service.upload_to_selections(video, _selections()[1:2])

    assert results[0].status == "success", results[0].message
    assert seen_during_transfer["token"] == "yt-fresh"
    assert await db_session.get(OAuthState, seen_during_transfer["state"]) is not None


@pytest.mark.asyncio
async def test_expired_mark_is_committed(db_session, session_factory, transport, video, oauth_settings):
    await _link(
        db_session,
        Platform.TIKTOK,
        "open-1",
        refresh_token=None,
        token_expires_at=datetime.utcnow() - timedelta(minutes=1),
    )
    await db_session.commit()
    service = UploadService(db_session, transport=transport, drivers=_drivers())

    results = await service.upload_to_selections(video, _selections()[:1])

    assert results[0].reauth_required is True
    async with session_factory() as other:
        stored = await AccountService(other).get_account(Platform.TIKTOK, "open-1")
    assert stored.auth_status == AuthStatus.EXPIRED


@pytest.mark.asyncio
async def test_duplicate_selections_are_processed_separately(db_session, transport, video, oauth_settings):
    await _link(db_session, Platform.TIKTOK, "open-1")
    drivers = _drivers()
    service = UploadService(db_session, transport=transport, drivers=drivers)
    selection = _selections()[0]

    results = await service.upload_to_selections(video, [selection, selection])

    assert len(results) == 2
    assert len(drivers[Platform.TIKTOK].calls) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "selections, message",
    [
        ([], "at least one"),
        ([UploadSelection(platform=Platform.TIKTOK, account_id="open-1", caption="  ")], "caption"),
        ([UploadSelection(platform=Platform.YOUTUBE, account_id="UC1")], "title"),
        ([UploadSelection(platform=Platform.FACEBOOK, account_id="page-1", title="")], "title"),
        ([UploadSelection(platform=Platform.YOUTUBE, account_id="", title="t")], "account_id"),
    ],
)
async def test_invalid_batches_fail_before_any_upload(
    db_session, transport, video, oauth_settings, selections, message
):
    drivers = _drivers()
    service = UploadService(db_session, transport=transport, drivers=drivers)

    with pytest.raises(ValidationError, match=message):
        await service.upload_to_selections(video, selections)

    assert all(driver.calls == [] for driver in drivers.values())


@pytest.mark.asyncio
async def test_empty_video_is_rejected(db_session, transport, make_video, oauth_settings):
    video = VideoFile.from_path(make_video(0, name="empty.mp4"))
    service = UploadService(db_session, transport=transport, drivers=_drivers())

    with pytest.raises(ValidationError, match="empty"):
        await service.upload_to_selections(video, _selections()[:1])


def test_selection_from_dict_parses_tags_and_platform():
    selection = UploadSelection.from_dict(
        {"platform": "YouTube", "account_id": "UC1", "title": "t", "tags": "one, two,,three"}
    )

    assert selection.platform == Platform.YOUTUBE
    assert selection.tags == ["one", "two", "three"]


def test_selection_from_dict_rejects_unknown_platform():
    with pytest.raises(ValidationError, match="Invalid platform"):
        UploadSelection.from_dict({"platform": "myspace", "account_id": "x"})


def test_tiktok_caption_becomes_title():
    metadata = metadata_for(UploadSelection(platform=Platform.TIKTOK, account_id="a", caption="hi"))

    assert metadata.title == "hi"
    assert metadata.caption == "hi"
