"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.product_video import ProductVideo
from app.models.social_connection import SocialConnection
from app.models.social_post_job import JobStatus, SocialPostJob

# Export all for convenience
__all__ = ["Base", "ProductVideo", "SocialConnection", "SocialPostJob", "JobStatus"]
