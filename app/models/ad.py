from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from app.database import Base


class Ad(Base):
    __tablename__ = "ads"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)  # NULL = house ad
    title = Column(String(150), nullable=False)
    category = Column(String(60), nullable=False, default="OUTROS")
    description = Column(Text, nullable=True)
    image_url = Column(String(512), nullable=True)
    destination_url = Column(String(512), nullable=True)
    position = Column(String(40), nullable=False, default="sidebar", index=True)
    location_city = Column(String(120), nullable=True)
    location_state = Column(String(40), nullable=True)
    status = Column(String(20), nullable=False, default="active", index=True)  # active|paused|rejected
    views_count = Column(Integer, nullable=False, default=0)
    clicks_count = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
