"""Account service for the linked-account credential store."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.account import Account, AuthStatus, Platform
from app.services.errors import AccountNotFoundError


@dataclass
class TokenSet:
    """Tokens issued by a provider for one account."""
    access_token: str
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    scope: Optional[str] = None


class AccountService:
    """Service for storing and updating credential records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_account(self, platform: Platform, external_account_id: str) -> Optional[Account]:
        """Get an account by platform and external id."""
        result = await self.db.execute(
            select(Account).where(
                Account.platform == platform,
                Account.external_account_id == external_account_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_account(
        self,
        platform: Platform,
        external_account_id: str,
        tokens: TokenSet,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        user_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        default_display_name: Optional[str] = None,
    ) -> Tuple[Account, bool]:
        """
        Create or update the credential record for (external id, platform).

        Returns the account and whether it was newly created. Fields the
        provider omitted (refresh token, display data) keep their stored values.
        """
        account = await self.get_account(platform, external_account_id)

        if account is None:
            account = Account(
                platform=platform,
                external_account_id=external_account_id,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                token_expires_at=tokens.token_expires_at,
                scope=tokens.scope,
                display_name=display_name or default_display_name,
                avatar_url=avatar_url,
                user_id=user_id,
                workspace_id=workspace_id,
                auth_status=AuthStatus.CONNECTED,
            )
            self.db.add(account)
            await self.db.flush()
            await self.db.refresh(account)
            return account, True

        account.access_token = tokens.access_token
        account.token_expires_at = tokens.token_expires_at
        account.auth_status = AuthStatus.CONNECTED
        if tokens.refresh_token:
            account.refresh_token = tokens.refresh_token
        if tokens.scope:
            account.scope = tokens.scope
        if display_name:
            account.display_name = display_name
        if avatar_url:
            account.avatar_url = avatar_url
        if user_id is not None:
            account.user_id = user_id
        if workspace_id is not None:
            account.workspace_id = workspace_id
        account.updated_at = datetime.utcnow()

        await self.db.flush()
        await self.db.refresh(account)
        return account, False

    async def update_tokens(
        self,
        account: Account,
        access_token: str,
        token_expires_at: Optional[datetime],
        refresh_token: Optional[str] = None,
    ) -> Account:
        """Persist a refreshed access token. The refresh token changes only if a new one is given."""
        account.access_token = access_token
        account.token_expires_at = token_expires_at
        if refresh_token:
            account.refresh_token = refresh_token
        account.auth_status = AuthStatus.CONNECTED
        account.updated_at = datetime.utcnow()

        await self.db.flush()
        return account

    async def mark_expired(self, account: Account) -> Account:
        """Flag an account whose credentials need the user to reconnect."""
        account.auth_status = AuthStatus.EXPIRED
        account.updated_at = datetime.utcnow()
        await self.db.flush()
        return account

    async def mark_uploaded(self, account: Account) -> Account:
        """Record a successful upload."""
        account.last_upload_at = datetime.utcnow()
        await self.db.flush()
        return account

    async def delete_account(self, platform: Platform, external_account_id: str) -> None:
        """Unlink an account."""
        account = await self.get_account(platform, external_account_id)
        if not account:
            raise AccountNotFoundError(
                f"{platform.value} account {external_account_id} not found"
            )

        await self.db.delete(account)
        await self.db.flush()
