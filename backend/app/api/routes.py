"""API routes."""
import json
import logging
import shutil
import uuid
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.database import get_db
from app.models.account import Platform
from app.models.upload_job import UploadJob, UploadJobStatus
from app.api.schemas import (
    HealthResponse,
    LinkedAccountResponse,
    OAuthCallbackRequest,
    OAuthCallbackResponse,
    OAuthStartRequest,
    OAuthStartResponse,
    SelectionResultResponse,
    SuccessResponse,
    UploadJobResponse,
    UploadSelectionRequest,
)
from app.services.account_service import AccountService
from app.services.errors import (
    AccountNotFoundError,
    ConfigurationError,
    CrossPostError,
    ReauthRequiredError,
    UpstreamError,
)
from app.services.oauth_service import OAuthService
from app.services.platforms import get_platform_config, parse_platform
from app.services.upload_service import UploadSelection, validate_selections
from app.services.uploaders import VideoFile
from app.workers.job_runner import job_runner

router = APIRouter()
logger = logging.getLogger(__name__)


def _http_error(exc: CrossPostError) -> HTTPException:
    """Map a classified error onto an HTTP status."""
    if isinstance(exc, ConfigurationError):
        status_code = 500
    elif isinstance(exc, UpstreamError):
        status_code = 502
    elif isinstance(exc, ReauthRequiredError):
        status_code = 401
    elif isinstance(exc, AccountNotFoundError):
        status_code = 404
    else:
        status_code = 400
    return HTTPException(status_code=status_code, detail=exc.message)


def _platform(value: str) -> Platform:
    try:
        return parse_platform(value)
    except CrossPostError as e:
        raise _http_error(e)


# =============================================================================
# Health & System
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Check API health and which platforms have OAuth credentials."""
    platforms = {
        platform.value: get_platform_config(platform).is_configured
        for platform in Platform
    }

    message = None
    missing = [name for name, configured in platforms.items() if not configured]
    if missing:
        message = f"OAuth not configured for: {', '.join(missing)}"

    return HealthResponse(
        status="healthy" if not missing else "degraded",
        platforms=platforms,
        message=message,
    )


# =============================================================================
# Account Linking
# =============================================================================

@router.post("/oauth/{platform}/start", response_model=OAuthStartResponse)
async def start_oauth(
    platform: str,
    data: Optional[OAuthStartRequest] = None,
    db: AsyncSession = Depends(get_db)
):
    """
    Start linking an account.

    Redirect the user to auth_url and keep state and code_verifier for the
    callback.
    """
    data = data or OAuthStartRequest()
    service = OAuthService(db)
    try:
        start = await service.start_link(
            _platform(platform),
            user_id=data.user_id,
            workspace_id=data.workspace_id,
            force_consent=data.force_consent,
        )
    except CrossPostError as e:
        raise _http_error(e)

    return OAuthStartResponse(
        auth_url=start.auth_url,
        state=start.state,
        code_verifier=start.code_verifier,
    )


@router.post("/oauth/{platform}/callback", response_model=OAuthCallbackResponse)
async def oauth_callback(
    platform: str,
    data: OAuthCallbackRequest,
    db: AsyncSession = Depends(get_db)
):
    """Complete OAuth flow with the authorization code."""
    service = OAuthService(db)
    try:
        result = await service.exchange_code_for_token(
            _platform(platform),
            code=data.code,
            state=data.state,
            code_verifier=data.code_verifier,
        )
    except UpstreamError as e:
        logger.warning("OAuth callback upstream error for platform=%s: %s", platform, e)
        raise _http_error(e)
    except CrossPostError as e:
        raise _http_error(e)

    primary = result.primary
    return OAuthCallbackResponse(
        platform=result.platform.value,
        account_id=primary.account.external_account_id,
        display_name=primary.account.display_name,
        is_new=primary.is_new,
        accounts=[LinkedAccountResponse(**item.to_dict()) for item in result.accounts],
    )


@router.delete("/accounts/{platform}/{external_account_id}", response_model=SuccessResponse)
async def delete_account(
    platform: str,
    external_account_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Unlink an account."""
    service = AccountService(db)
    try:
        await service.delete_account(_platform(platform), external_account_id)
    except CrossPostError as e:
        raise _http_error(e)
    return SuccessResponse()


# =============================================================================
# Uploads
# =============================================================================

def _parse_selections(raw: str) -> List[UploadSelection]:
    try:
        items = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="selections must be a JSON array")
    if not isinstance(items, list):
        raise HTTPException(status_code=400, detail="selections must be a JSON array")

    try:
        requests = [UploadSelectionRequest.model_validate(item) for item in items]
        return [UploadSelection.from_dict(item.model_dump()) for item in requests]
    except PydanticValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid selection: {e.errors()[0]['msg']}")
    except CrossPostError as e:
        raise _http_error(e)


def _job_to_response(job: UploadJob) -> UploadJobResponse:
    return UploadJobResponse(
        id=job.id,
        status=job.status.value,
        progress=job.progress,
        message=job.message,
        video_filename=job.video_filename,
        results=[SelectionResultResponse(**item) for item in job.result_list()],
        error=job.error,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )


@router.post("/uploads", response_model=UploadJobResponse, status_code=202)
async def create_upload(
    file: UploadFile = File(...),
    selections: str = Form(..., description="JSON array of selections"),
    db: AsyncSession = Depends(get_db)
):
    """
    Upload one video to every selected account.

    The batch runs in the background; poll GET /uploads/{job_id} for
    per-selection results.
    """
    parsed = _parse_selections(selections)

    filename = Path(file.filename or "video.mp4").name
    temp_path = settings.uploads_dir / f"{uuid.uuid4().hex}{Path(filename).suffix}"
    with open(temp_path, "wb") as f:
        shutil.copyfileobj(file.file, f)

    try:
        video = VideoFile.from_path(temp_path, mime_type=file.content_type, filename=filename)
        validate_selections(video, parsed)
    except CrossPostError as e:
        temp_path.unlink()
        raise _http_error(e)

    job = UploadJob(
        status=UploadJobStatus.PENDING,
        progress=0.0,
        message=f"Queued upload to {len(parsed)} account(s)",
        video_path=str(temp_path),
        video_filename=filename,
        video_mime_type=video.mime_type,
        selections=json.dumps([selection.to_dict() for selection in parsed]),
    )
    db.add(job)
    await db.flush()
    await db.refresh(job)
    # The runner reads the job in its own session
    await db.commit()

    await job_runner.start_job(job.id, "upload")
    logger.info("Queued upload job %s for %s selection(s)", job.id, len(parsed))
    return _job_to_response(job)


@router.get("/uploads/{job_id}", response_model=UploadJobResponse)
async def get_upload(job_id: int, db: AsyncSession = Depends(get_db)):
    """Get an upload job with its per-selection results."""
    job = await db.get(UploadJob, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Upload job not found")
    return _job_to_response(job)
