from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from app.database import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = (CheckConstraint("credit_balance >= 0", name="ck_users_credit_balance"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    whatsapp = Column(String(30), nullable=True)
    phone = Column(String(30), nullable=True)
    role = Column(String(20), nullable=False, default="DRIVER", index=True)  # DRIVER|COMPANY|ADVERTISER|ADMIN
    status = Column(String(20), nullable=False, default="active")
    is_verified = Column(Boolean, nullable=False, default=False)
    verified_until = Column(DateTime(timezone=True), nullable=True)
    document_status = Column(String(20), nullable=False, default="pending")  # pending|approved|rejected
    rating_avg = Column(Numeric(3, 2), nullable=False, default=0)
    rating_count = Column(Integer, nullable=False, default=0)
    credit_balance = Column(Numeric(12, 2), nullable=False, default=0)
    slug = Column(String(180), unique=True, nullable=True)
    avatar_url = Column(String(512), nullable=True)
    city = Column(String(120), nullable=True)
    bio = Column(Text, nullable=True)
    # Driver profile used by freight matching
    vehicle_type = Column(String(60), nullable=True, index=True)
    body_type = Column(String(60), nullable=True, index=True)
    preferred_region = Column(String(60), nullable=True, index=True)
    push_token = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)
