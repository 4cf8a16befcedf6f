"""PKCE OAuth flow for linking TikTok, YouTube and Facebook Page accounts."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings
from app.models.account import Account, Platform
from app.services.account_service import AccountService, TokenSet
from app.services.errors import (
    MissingParametersError,
    ProviderRejectedError,
    UpstreamError,
)
from app.services.http_transport import HttpTransport, extract_error_detail, response_payload
from app.services.oauth_ledger import OAuthStateContext, OAuthStateLedger
from app.services.platforms import PlatformConfig, get_platform_config, graph_url
from app.services.token_guard import expires_at_from

logger = logging.getLogger(__name__)

TIKTOK_USER_INFO_URL = "https://open.tiktokapis.com/v2/user/info/"
YOUTUBE_CHANNELS_URL = "https://www.googleapis.com/youtube/v3/channels"


@dataclass
class LinkStart:
    """What the caller needs to send the user to the provider and finish the flow later."""
    auth_url: str
    state: str
    code_verifier: str


@dataclass
class LinkedAccount:
    """One credential record written by a completed link flow."""
    account: Account
    is_new: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account.external_account_id,
            "display_name": self.account.display_name,
            "avatar_url": self.account.avatar_url,
            "is_new": self.is_new,
        }


@dataclass
class LinkResult:
    """Result of a completed link flow. Facebook may link several Pages at once."""
    platform: Platform
    accounts: List[LinkedAccount]

    @property
    def primary(self) -> LinkedAccount:
        return self.accounts[0]


def build_authorization_url(
    config: PlatformConfig,
    state: str,
    code_challenge: str,
    force_consent: bool = False,
) -> str:
    """Provider authorize URL. The code verifier is never part of it."""
    params = {
        config.client_id_param: config.client_id,
        "redirect_uri": config.redirect_uri,
        "response_type": "code",
        "scope": config.scope,
    }
    params.update(config.authorize_params)
    if force_consent:
        params.update(config.consent_params)
    params.update(
        {
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
    )
    return f"{config.authorize_url}?{urlencode(params)}"


class OAuthService:
    """Starts and completes account link flows."""

    def __init__(
        self,
        db: AsyncSession,
        transport: Optional[HttpTransport] = None,
        app_settings: Optional[Settings] = None,
    ):
        self.db = db
        self.transport = transport or HttpTransport()
        self.settings = app_settings or settings
        self.ledger = OAuthStateLedger(db, ttl_minutes=self.settings.oauth_state_ttl_minutes)
        self._accounts = AccountService(db)

    def get_config(self, platform: Platform) -> PlatformConfig:
        return get_platform_config(platform, self.settings)

    async def start_link(
        self,
        platform: Platform,
        user_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        force_consent: bool = False,
    ) -> LinkStart:
        """Issue a ledger state and build the authorize URL for it."""
        config = self.get_config(platform)
        config.require_credentials()

        grant = await self.ledger.create(platform, user_id=user_id, workspace_id=workspace_id)
        auth_url = build_authorization_url(
            config,
            state=grant.state,
            code_challenge=grant.code_challenge,
            force_consent=force_consent,
        )
        return LinkStart(
            auth_url=auth_url,
            state=grant.state,
            code_verifier=grant.code_verifier,
        )

    async def exchange_code_for_token(
        self,
        platform: Platform,
        code: Optional[str],
        state: Optional[str],
        code_verifier: Optional[str],
    ) -> LinkResult:
        """
        Complete a link flow.

        Redeems the state, exchanges the authorization code (with the PKCE
        verifier) for tokens, fetches profile data and upserts the
        credential record(s).
        """
        missing = [
            name
            for name, value in (("code", code), ("state", state), ("code_verifier", code_verifier))
            if not value
        ]
        if missing:
            raise MissingParametersError(f"Missing required parameters: {', '.join(missing)}")

        config = self.get_config(platform)
        config.require_credentials()

        context = await self.ledger.consume(platform, state, code_verifier)
        # The claim must survive a failed exchange, or the state could be redeemed again
        await self.db.commit()

        token_data = await self._request_tokens(config, code, code_verifier)

        if platform == Platform.TIKTOK:
            linked = [await self._link_tiktok(config, token_data, context)]
        elif platform == Platform.YOUTUBE:
            linked = [await self._link_youtube(config, token_data, context)]
        else:
            linked = await self._link_facebook_pages(config, token_data, context)

        for item in linked:
            logger.info(
                "Linked %s account %s (new=%s)",
                platform.value,
                item.account.external_account_id,
                item.is_new,
            )
        return LinkResult(platform=platform, accounts=linked)

    async def _request_tokens(
        self,
        config: PlatformConfig,
        code: str,
        code_verifier: str,
    ) -> Dict[str, Any]:
        """authorization_code grant against the provider token endpoint."""
        response = await self.transport.post(
            config.token_url,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Cache-Control": "no-cache",
            },
            data={
                config.client_id_param: config.client_id,
                config.client_secret_param: config.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": config.redirect_uri,
                "code_verifier": code_verifier,
            },
        )

        if response.status_code >= 500:
            raise UpstreamError(
                f"{config.label} OAuth token exchange failed: {extract_error_detail(response)}",
                payload=response_payload(response),
            )

        if response.status_code != 200:
            detail = extract_error_detail(response)
            logger.info(
                "%s OAuth token exchange rejected status=%s detail=%s",
                config.label,
                response.status_code,
                detail,
            )
            raise ProviderRejectedError(
                f"OAuth token exchange failed: {detail}",
                payload=response_payload(response),
            )

        try:
            token_data = response.json()
        except ValueError as exc:
            raise ProviderRejectedError(
                "OAuth token exchange failed: invalid provider response",
                payload=response.text,
            ) from exc

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise ProviderRejectedError(
                f"Failed to obtain access token from {config.label}: {extract_error_detail(response)}",
                payload=token_data,
            )
        return token_data

    async def _get_json(
        self,
        url: str,
        what: str,
        params: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """GET a provider resource, classifying failures."""
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        response = await self.transport.get(url, headers=headers, params=params)

        if response.status_code >= 500:
            raise UpstreamError(
                f"Unable to load {what}: {extract_error_detail(response)}",
                payload=response_payload(response),
            )
        if response.status_code != 200:
            raise ProviderRejectedError(
                f"Unable to load {what}: {extract_error_detail(response)}",
                payload=response_payload(response),
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderRejectedError(
                f"Unable to load {what}: invalid provider response",
                payload=response.text,
            ) from exc

    def _token_set(self, token_data: Dict[str, Any], config: PlatformConfig) -> TokenSet:
        return TokenSet(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            token_expires_at=expires_at_from(token_data),
            scope=token_data.get("scope") or config.scope,
        )

    async def _link_tiktok(
        self,
        config: PlatformConfig,
        token_data: Dict[str, Any],
        context: OAuthStateContext,
    ) -> LinkedAccount:
        open_id = token_data.get("open_id")
        if not open_id:
            raise ProviderRejectedError("TikTok did not return an open_id", payload=token_data)

        # Profile data is cosmetic; a failed lookup does not fail the link
        user: Dict[str, Any] = {}
        try:
            payload = await self._get_json(
                TIKTOK_USER_INFO_URL,
                "TikTok user info",
                params={"fields": "open_id,union_id,avatar_url,display_name"},
                access_token=token_data["access_token"],
            )
            user = (payload.get("data") or {}).get("user") or {}
        except (ProviderRejectedError, UpstreamError) as exc:
            logger.warning("TikTok user info lookup failed for open_id=%s: %s", open_id, exc)

        account, is_new = await self._accounts.upsert_account(
            platform=Platform.TIKTOK,
            external_account_id=open_id,
            tokens=self._token_set(token_data, config),
            display_name=user.get("display_name"),
            avatar_url=user.get("avatar_url"),
            user_id=context.user_id,
            workspace_id=context.workspace_id,
            default_display_name="TikTok User",
        )
        return LinkedAccount(account=account, is_new=is_new)

    async def _link_youtube(
        self,
        config: PlatformConfig,
        token_data: Dict[str, Any],
        context: OAuthStateContext,
    ) -> LinkedAccount:
        payload = await self._get_json(
            YOUTUBE_CHANNELS_URL,
            "YouTube channels",
            params={"part": "snippet", "mine": "true"},
            access_token=token_data["access_token"],
        )
        items = [item for item in payload.get("items") or [] if item.get("id")]
        if not items:
            raise ProviderRejectedError(
                "No YouTube channel found for this Google account",
                payload=payload,
            )

        channel = items[0]
        snippet = channel.get("snippet") or {}
        thumbnail = ((snippet.get("thumbnails") or {}).get("default") or {}).get("url")

        account, is_new = await self._accounts.upsert_account(
            platform=Platform.YOUTUBE,
            external_account_id=channel["id"],
            tokens=self._token_set(token_data, config),
            display_name=snippet.get("title"),
            avatar_url=thumbnail,
            user_id=context.user_id,
            workspace_id=context.workspace_id,
            default_display_name="Untitled channel",
        )
        return LinkedAccount(account=account, is_new=is_new)

    async def _long_lived_facebook_token(self, config: PlatformConfig, user_token: str) -> str:
        """Swap a short-lived user token for a long-lived one so Page tokens do not expire."""
        payload = await self._get_json(
            config.token_url,
            "long-lived Facebook token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "fb_exchange_token": user_token,
            },
        )
        long_lived = payload.get("access_token")
        if not long_lived:
            raise ProviderRejectedError(
                "Facebook did not return a long-lived token",
                payload=payload,
            )
        return long_lived

    async def _link_facebook_pages(
        self,
        config: PlatformConfig,
        token_data: Dict[str, Any],
        context: OAuthStateContext,
    ) -> List[LinkedAccount]:
        user_token = await self._long_lived_facebook_token(config, token_data["access_token"])
        payload = await self._get_json(
            graph_url("me/accounts", self.settings),
            "Facebook pages",
            params={"fields": "id,name,access_token,picture", "access_token": user_token},
        )
        pages = [page for page in payload.get("data") or [] if page.get("id") and page.get("access_token")]
        if not pages:
            raise ProviderRejectedError(
                "No Facebook pages found for this token. "
                "Make sure you have admin access to at least one page.",
                payload=payload,
            )

        linked: List[LinkedAccount] = []
        for page in pages:
            picture = ((page.get("picture") or {}).get("data") or {}).get("url")
            account, is_new = await self._accounts.upsert_account(
                platform=Platform.FACEBOOK,
                external_account_id=page["id"],
                tokens=TokenSet(
                    access_token=page["access_token"],
                    scope=token_data.get("scope") or config.scope,
                ),
                display_name=page.get("name"),
                avatar_url=picture,
                user_id=context.user_id,
                workspace_id=context.workspace_id,
                default_display_name="Facebook Page",
            )
            linked.append(LinkedAccount(account=account, is_new=is_new))
        return linked
