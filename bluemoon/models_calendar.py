"""
Calendar Integration Models
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from .database import Base

CALENDAR_PROVIDERS = ("google", "ical")


class CalendarIntegration(Base):
    __tablename__ = "calendar_integrations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(20), nullable=False, index=True)  # google, ical
    account_email = Column(String(255), nullable=False)
    is_connected = Column(Boolean, default=True, nullable=False)

    # Ciphertext envelopes only. For ical, access_token holds the packed basic-auth pair.
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    calendar_id = Column(String(500), nullable=True)
    calendar_name = Column(String(255), nullable=True)
    caldav_url = Column(String(1000), nullable=True)
    last_sync = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "provider", "account_email", name="uq_calendar_integrations_account"),
    )
