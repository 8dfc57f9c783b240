"""SocialConnection model"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text

from app.models.base import Base


class SocialConnection(Base):
    """OAuth credentials per user and platform (tokens encrypted)"""
    __tablename__ = "social_connections"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    platform = Column(String(32), nullable=False)  # youtube, meta, onedrive
    access_token = Column(Text, nullable=False)  # Encrypted
    refresh_token = Column(Text)  # Encrypted
    expires_at = Column(DateTime(timezone=True))
    account_id = Column(String(128))  # YouTube channel, Facebook page or drive owner
    account_name = Column(String(255))
    instagram_account_id = Column(String(128))  # Meta only: linked Instagram business account
    extra_data = Column(JSON)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index('ix_social_connections_user_platform', 'user_id', 'platform', unique=True),
    )
