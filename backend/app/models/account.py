"""Account model for linked social media platform credentials."""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text, UniqueConstraint

from app.db.database import Base


class Platform(str, enum.Enum):
    """Supported social media platforms."""
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    FACEBOOK = "facebook"


class AuthStatus(str, enum.Enum):
    """Account authentication status."""
    CONNECTED = "connected"
    EXPIRED = "expired"


class Account(Base):
    """Credential record for one linked account (TikTok user, YouTube channel or Facebook Page)."""

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("external_account_id", "platform", name="uq_accounts_external_platform"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Platform identity
    platform = Column(Enum(Platform), nullable=False)
    external_account_id = Column(String(255), nullable=False, index=True)  # open_id, channel id or page id
    display_name = Column(String(255), nullable=True)
    avatar_url = Column(Text, nullable=True)

    # Authentication
    auth_status = Column(Enum(AuthStatus), default=AuthStatus.CONNECTED, nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)
    scope = Column(Text, nullable=True)

    # Caller context captured when the link flow started
    user_id = Column(String(255), nullable=True)
    workspace_id = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_upload_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return (
            f"<Account(id={self.id}, platform={self.platform}, "
            f"external_account_id='{self.external_account_id}')>"
        )

    def to_dict(self):
        """Convert to dictionary (excludes sensitive auth data)."""
        return {
            "id": self.id,
            "platform": self.platform.value,
            "external_account_id": self.external_account_id,
            "display_name": self.display_name,
            "avatar_url": self.avatar_url,
            "auth_status": self.auth_status.value if self.auth_status else None,
            "scope": self.scope,
            "token_expires_at": self.token_expires_at.isoformat() if self.token_expires_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "last_upload_at": self.last_upload_at.isoformat() if self.last_upload_at else None,
        }
