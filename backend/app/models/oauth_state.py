"""Short-lived server-side OAuth state for PKCE link flows."""
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, String

from app.db.database import Base
from app.models.account import Platform


class OAuthState(Base):
    """Correlates a CSRF state token with its PKCE verifier until the callback redeems it."""

    __tablename__ = "oauth_states"

    state = Column(String(255), primary_key=True)
    platform = Column(Enum(Platform), nullable=False, index=True)

    code_verifier = Column(String(255), nullable=False)
    code_challenge = Column(String(255), nullable=False)

    user_id = Column(String(255), nullable=True)
    workspace_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<OAuthState(platform={self.platform}, used={self.used})>"
