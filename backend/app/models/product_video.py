"""ProductVideo model"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from app.models.base import Base


class ProductVideo(Base):
    """A product video stored in the user's OneDrive"""
    __tablename__ = "product_videos"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    onedrive_file_id = Column(String(255), nullable=False)
    content_type = Column(String(100), default="video/mp4")
    product_title = Column(String(500))  # Title of the sourced product
    video_title = Column(String(500))  # Curated title for social posts
    asin = Column(String(20))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
