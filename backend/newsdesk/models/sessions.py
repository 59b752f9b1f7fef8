"""
Session, geo-tracking and cleanup audit tables.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Text, DateTime, Boolean, Integer, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column
from newsdesk.models.database import Base, utcnow


class AdminSession(Base):
    """Cookie session for the admin panel."""
    __tablename__ = "admin_session_store"

    sid: Mapped[str] = mapped_column(String(255), primary_key=True)
    sess: Mapped[dict] = mapped_column(JSON)
    expire: Mapped[datetime] = mapped_column(DateTime, index=True)

    def __repr__(self) -> str:
        return f"<AdminSession(sid={self.sid}, expire={self.expire})>"


class PublicSession(Base):
    """Cookie session for site visitors."""
    __tablename__ = "public_session_store"

    sid: Mapped[str] = mapped_column(String(255), primary_key=True)
    sess: Mapped[dict] = mapped_column(JSON)
    expire: Mapped[datetime] = mapped_column(DateTime, index=True)

    def __repr__(self) -> str:
        return f"<PublicSession(sid={self.sid}, expire={self.expire})>"


class UserSession(Base):
    """Client (reader account) login session."""
    __tablename__ = "user_sessions"

    session_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)

    def __repr__(self) -> str:
        return f"<UserSession(session_id={self.session_id}, user_id={self.user_id})>"


class SessionGeo(Base):
    """Approximate visitor location, one row per public session."""
    __tablename__ = "session_geo"

    session_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    county: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    town: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    visit_count: Mapped[int] = mapped_column(Integer, default=1)
    first_seen: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_seen: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<SessionGeo(session_id={self.session_id}, county={self.county})>"


class CleanupHistory(Base):
    """One row per completed cleanup pass."""
    __tablename__ = "cleanup_history"

    cleanup_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(20))  # 'manual' or 'automatic'
    public_sessions: Mapped[int] = mapped_column(Integer, default=0)
    admin_sessions: Mapped[int] = mapped_column(Integer, default=0)
    user_sessions: Mapped[int] = mapped_column(Integer, default=0)
    geo_sessions: Mapped[int] = mapped_column(Integer, default=0)
    # Reserved, always zero
    preserved_device_info: Mapped[int] = mapped_column(Integer, default=0)
    preserved_geographic_data: Mapped[int] = mapped_column(Integer, default=0)
    total_sessions: Mapped[int] = mapped_column(Integer, default=0)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20))  # 'success' or 'failed'
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    triggered_by: Mapped[str] = mapped_column(String(20), default="system")
    cleaned_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('idx_cleanup_history_cleaned_at', 'cleaned_at'),
    )

    def __repr__(self) -> str:
        return f"<CleanupHistory(id={self.cleanup_id}, type={self.type}, status={self.status})>"


class SchedulerLog(Base):
    """Audit trail of scheduler start/stop transitions."""
    __tablename__ = "scheduler_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(50))
    event_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<SchedulerLog(id={self.id}, event_type={self.event_type})>"
