from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from app.database import Base


class Freight(Base):
    __tablename__ = "freights"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_freights_price"),
        CheckConstraint("weight >= 0", name="ck_freights_weight"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    origin_city = Column(String(120), nullable=False)
    origin_state = Column(String(2), nullable=False, default="", index=True)
    dest_city = Column(String(120), nullable=False)
    dest_state = Column(String(2), nullable=False, default="")
    product = Column(String(150), nullable=False)
    weight = Column(Numeric(12, 2), nullable=False, default=0)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    vehicle_type = Column(String(60), nullable=False, default="Qualquer")
    body_type = Column(String(60), nullable=False, default="Qualquer")
    description = Column(Text, nullable=True)
    whatsapp = Column(String(30), nullable=True)
    status = Column(String(20), nullable=False, default="PENDING", index=True)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    assigned_driver_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    payment_status = Column(String(20), nullable=False, default="PENDING")
    views_count = Column(Integer, nullable=False, default=0)
    clicks_count = Column(Integer, nullable=False, default=0)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)
