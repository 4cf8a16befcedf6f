"""Error taxonomy shared by the OAuth flow, the upload drivers and the orchestrator."""
from typing import Any, Optional


class CrossPostError(Exception):
    """Base class for classified errors. Keeps the provider payload for diagnostics."""

    def __init__(self, message: str, payload: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.payload = payload


class ValidationError(CrossPostError, ValueError):
    """Missing or malformed caller input. Raised before any network call."""


class MissingParametersError(ValidationError):
    """A required OAuth callback parameter is absent."""


class ConfigurationError(CrossPostError):
    """Server misconfiguration, e.g. missing client credentials."""


class StateNotFoundError(CrossPostError):
    """No unused, unexpired OAuth state matches the callback."""


class VerifierMismatchError(CrossPostError):
    """The PKCE verifier does not match the one issued with the state."""


class ProviderRejectedError(CrossPostError):
    """The provider answered but refused the request."""


class UpstreamError(CrossPostError):
    """The provider could not be reached or failed with a server error."""

    def __init__(self, message: str, payload: Optional[Any] = None, network: bool = False):
        super().__init__(message, payload)
        self.network = network


class ReauthRequiredError(CrossPostError):
    """The stored credential cannot be used without the user linking the account again."""


class RefreshFailedError(ReauthRequiredError):
    """The provider refused the refresh-token grant."""


class AccountNotFoundError(CrossPostError):
    """No credential record exists for the platform/account pair."""
