"""Token freshness guard run before every authenticated provider call."""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.account import Account
from app.services.account_service import AccountService
from app.services.errors import ReauthRequiredError, RefreshFailedError, UpstreamError
from app.services.http_transport import HttpTransport, extract_error_detail, response_payload
from app.services.platforms import PlatformConfig

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN_SECONDS = 3600


def expires_at_from(token_data: Dict[str, Any], now: Optional[datetime] = None) -> datetime:
    """Absolute expiry for a token response's expires_in."""
    try:
        expires_in = int(token_data.get("expires_in") or DEFAULT_EXPIRES_IN_SECONDS)
    except (TypeError, ValueError):
        expires_in = DEFAULT_EXPIRES_IN_SECONDS
    return (now or datetime.utcnow()) + timedelta(seconds=expires_in)


class TokenFreshnessGuard:
    """Returns a usable access token, refreshing and persisting it when stale."""

    def __init__(
        self,
        db: AsyncSession,
        transport: Optional[HttpTransport] = None,
        margin_minutes: Optional[int] = None,
    ):
        self.db = db
        self.transport = transport or HttpTransport()
        if margin_minutes is None:
            margin_minutes = settings.token_refresh_margin_minutes
        self.margin = timedelta(minutes=margin_minutes)
        self._accounts = AccountService(db)

    def needs_refresh(self, account: Account, now: Optional[datetime] = None) -> bool:
        """True when the expiry is unknown or falls inside the refresh margin."""
        if account.token_expires_at is None:
            return True
        return (now or datetime.utcnow()) >= account.token_expires_at - self.margin

    async def ensure_fresh(self, account: Account, config: PlatformConfig) -> str:
        """
        Return a valid access token for the account.

        Raises ReauthRequiredError if the token is stale and cannot be
        refreshed, RefreshFailedError if the provider refuses the refresh,
        and UpstreamError if the provider cannot be reached.
        """
        if not config.tokens_expire and account.token_expires_at is None:
            return account.access_token

        if not self.needs_refresh(account):
            return account.access_token

        if not config.supports_refresh or not account.refresh_token:
            logger.info(
                "Token stale without refresh token for %s account %s",
                config.platform.value,
                account.external_account_id,
            )
            await self._accounts.mark_expired(account)
            raise ReauthRequiredError(
                f"{config.label} access expired. Please reconnect the account."
            )

        return await self.refresh(account, config)

    async def refresh(self, account: Account, config: PlatformConfig) -> str:
        """Run the refresh-token grant and persist the new token."""
        config.require_credentials()

        response = await self.transport.post(
            config.token_url,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Cache-Control": "no-cache",
            },
            data={
                config.client_id_param: config.client_id,
                config.client_secret_param: config.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": account.refresh_token,
            },
        )

        if response.status_code >= 500:
            raise UpstreamError(
                f"{config.label} token refresh failed: {extract_error_detail(response)}",
                payload=response_payload(response),
            )

        if response.status_code != 200:
            detail = extract_error_detail(response)
            logger.info(
                "%s token refresh rejected for account %s status=%s detail=%s",
                config.label,
                account.external_account_id,
                response.status_code,
                detail,
            )
            await self._accounts.mark_expired(account)
            raise RefreshFailedError(
                f"Failed to refresh {config.label} token - re-authorization required ({detail})",
                payload=response_payload(response),
            )

        try:
            token_data = response.json()
        except ValueError as exc:
            await self._accounts.mark_expired(account)
            raise RefreshFailedError(
                f"{config.label} token refresh failed: invalid provider response",
                payload=response.text,
            ) from exc

        access_token = token_data.get("access_token")
        if not access_token:
            await self._accounts.mark_expired(account)
            raise RefreshFailedError(
                f"{config.label} token refresh failed: access token missing",
                payload=token_data,
            )

        await self._accounts.update_tokens(
            account,
            access_token=access_token,
            token_expires_at=expires_at_from(token_data),
            refresh_token=token_data.get("refresh_token"),
        )
        logger.info(
            "Refreshed %s token for account %s",
            config.platform.value,
            account.external_account_id,
        )
        return access_token
