# Models module
from app.models.account import Account, AuthStatus, Platform
from app.models.oauth_state import OAuthState
from app.models.upload_job import UploadJob, UploadJobStatus

__all__ = ["Account", "AuthStatus", "Platform", "OAuthState", "UploadJob", "UploadJobStatus"]
