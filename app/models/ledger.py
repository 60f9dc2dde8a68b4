from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from app.database import Base


class ClickLog(Base):
    """Append-only interaction and audit events for freights, ads and listings."""

    __tablename__ = "click_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    target_id = Column(Integer, nullable=False, index=True)
    target_type = Column(String(20), nullable=False, index=True)
    event_type = Column(String(40), nullable=False, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(255), nullable=True)
    referer_url = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    ad_id = Column(Integer, ForeignKey("ads.id", ondelete="SET NULL"), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    kind = Column(String(20), nullable=False, index=True)  # RECHARGE|CONSUMPTION
    event_type = Column(String(40), nullable=True)
    status = Column(String(30), nullable=False, default="completed")  # completed|insufficient_funds
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class SiteSetting(Base):
    __tablename__ = "site_settings"

    setting_key = Column(String(80), primary_key=True)
    setting_value = Column(String(255), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
