"""Pydantic schemas for API requests and responses."""
from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field


# =============================================================================
# Health Check
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    platforms: Dict[str, bool] = Field(..., description="Whether OAuth credentials are set per platform")
    message: Optional[str] = None


# =============================================================================
# OAuth Schemas
# =============================================================================

class OAuthStartRequest(BaseModel):
    """Request to start linking an account."""
    user_id: Optional[str] = Field(None, description="Caller's user id, stored with the state")
    workspace_id: Optional[str] = Field(None, description="Caller's workspace id, stored with the state")
    force_consent: bool = Field(False, description="Ask the provider to show the consent screen again")


class OAuthStartResponse(BaseModel):
    """Authorize URL plus the values the caller returns on callback."""
    auth_url: str
    state: str
    code_verifier: str


class OAuthCallbackRequest(BaseModel):
    """Values the caller received from the provider redirect."""
    code: Optional[str] = None
    state: Optional[str] = None
    code_verifier: Optional[str] = None


class LinkedAccountResponse(BaseModel):
    """One linked account."""
    account_id: str
    display_name: Optional[str]
    avatar_url: Optional[str] = None
    is_new: bool


class OAuthCallbackResponse(BaseModel):
    """Result of a completed link flow."""
    platform: str
    account_id: str
    display_name: Optional[str]
    is_new: bool
    accounts: List[LinkedAccountResponse]


class SuccessResponse(BaseModel):
    success: bool = True


# =============================================================================
# Upload Schemas
# =============================================================================

class UploadSelectionRequest(BaseModel):
    """One target account with its per-post metadata."""
    platform: str
    account_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    caption: Optional[str] = Field(None, description="TikTok caption")
    tags: Optional[Union[List[str], str]] = Field(None, description="YouTube tags, list or comma separated")
    privacy: Optional[str] = None


class SelectionResultResponse(BaseModel):
    """Outcome of one selection."""
    platform: str
    account_id: str
    status: str
    message: str
    reauth_required: bool = False
    video_id: Optional[str] = None
    publish_id: Optional[str] = None


class UploadJobResponse(BaseModel):
    """Upload job status feed."""
    id: int
    status: str
    progress: float
    message: Optional[str]
    video_filename: Optional[str]
    results: List[SelectionResultResponse]
    error: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
