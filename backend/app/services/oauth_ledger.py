"""Server-side ledger of OAuth state tokens and their PKCE verifiers."""
import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.account import Platform
from app.models.oauth_state import OAuthState
from app.services.errors import StateNotFoundError, VerifierMismatchError

logger = logging.getLogger(__name__)


@dataclass
class OAuthStateGrant:
    """Values issued when a link flow starts."""
    state: str
    code_verifier: str
    code_challenge: str


@dataclass
class OAuthStateContext:
    """Caller context stored with a state and returned when it is redeemed."""
    platform: Platform
    user_id: Optional[str]
    workspace_id: Optional[str]
    created_at: datetime


def generate_code_verifier() -> str:
    """256-bit random PKCE verifier, base64url without padding (43 chars)."""
    return secrets.token_urlsafe(32)


def compute_code_challenge(code_verifier: str) -> str:
    """S256 code challenge: base64url(SHA-256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class OAuthStateLedger:
    """
    Issues and redeems single-use OAuth states.

    One table serves all platforms; the platform column keeps a state issued
    for one provider from being redeemed by another provider's callback.
    A wrong verifier is rejected before the state is claimed, so it does not
    burn the state.
    """

    def __init__(self, db: AsyncSession, ttl_minutes: Optional[int] = None):
        self.db = db
        if ttl_minutes is None:
            ttl_minutes = settings.oauth_state_ttl_minutes
        self.ttl = timedelta(minutes=ttl_minutes)

    def _cutoff(self, now: Optional[datetime] = None) -> datetime:
        return (now or datetime.utcnow()) - self.ttl

    async def clear_expired(self) -> int:
        """Delete states older than the TTL, used or not."""
        result = await self.db.execute(
            delete(OAuthState).where(OAuthState.created_at < self._cutoff())
        )
        return result.rowcount or 0

    async def create(
        self,
        platform: Platform,
        user_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
    ) -> OAuthStateGrant:
        """Issue a new state with a fresh PKCE pair."""
        state = secrets.token_urlsafe(32)
        code_verifier = generate_code_verifier()
        code_challenge = compute_code_challenge(code_verifier)

        self.db.add(
            OAuthState(
                state=state,
                platform=platform,
                code_verifier=code_verifier,
                code_challenge=code_challenge,
                user_id=user_id,
                workspace_id=workspace_id,
                created_at=datetime.utcnow(),
                used=False,
            )
        )
        await self.db.flush()

        removed = await self.clear_expired()
        if removed:
            logger.debug("Removed %s expired OAuth states", removed)

        logger.info(
            "Issued OAuth state for platform=%s user_id=%s workspace_id=%s",
            platform.value,
            user_id,
            workspace_id,
        )
        return OAuthStateGrant(
            state=state,
            code_verifier=code_verifier,
            code_challenge=code_challenge,
        )

    async def consume(
        self,
        platform: Platform,
        state: str,
        code_verifier: str,
    ) -> OAuthStateContext:
        """
        Redeem a state exactly once.

        Raises StateNotFoundError when no unused, unexpired state for this
        platform matches, and VerifierMismatchError when the verifier differs
        from the one issued with the state.
        """
        now = datetime.utcnow()
        cutoff = self._cutoff(now)

        result = await self.db.execute(
            select(OAuthState).where(
                OAuthState.state == state,
                OAuthState.platform == platform,
                OAuthState.used.is_(False),
                OAuthState.created_at > cutoff,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            logger.info("OAuth state not found or expired for platform=%s", platform.value)
            raise StateNotFoundError(
                "Invalid or expired state. Please restart the authentication flow."
            )

        if not secrets.compare_digest(
            record.code_verifier.encode("utf-8"),
            code_verifier.encode("utf-8"),
        ):
            logger.warning("OAuth code verifier mismatch for platform=%s", platform.value)
            raise VerifierMismatchError("Code verifier mismatch. Possible CSRF attack.")

        if not await self._claim(state, now, cutoff):
            # Another request redeemed the same state first
            logger.warning("OAuth state already redeemed for platform=%s", platform.value)
            raise StateNotFoundError(
                "Invalid or expired state. Please restart the authentication flow."
            )

        await self.db.refresh(record)
        return OAuthStateContext(
            platform=platform,
            user_id=record.user_id,
            workspace_id=record.workspace_id,
            created_at=record.created_at,
        )

    async def _claim(self, state: str, now: datetime, cutoff: datetime) -> bool:
        """Mark the state used if it is still unused. True when this call won."""
        result = await self.db.execute(
            update(OAuthState)
            .where(
                OAuthState.state == state,
                OAuthState.used.is_(False),
                OAuthState.created_at > cutoff,
            )
            .values(used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
