from __future__ import annotations
import uuid
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import Index, Integer, String, Float, Text, text
from sqlalchemy.types import DateTime

Base = declarative_base()

def utcnow():
    return datetime.now(timezone.utc)

def as_utc(dt: datetime | None) -> datetime | None:
    # SQLite hands timestamps back naive; they are stored as UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt

class QrStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"

class ScanType(str, Enum):
    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"

class Company(Base):
    __tablename__ = "companies"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    employee_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    location_label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    logo: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

class Display(Base):
    __tablename__ = "displays"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

# One issuance of a scannable code. Rows are demoted, never deleted, outside an admin purge.
class QrSession(Base):
    __tablename__ = "qr_sessions"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    token: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    display_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(16), default=QrStatus.ACTIVE.value, nullable=False)
    issued_by: Mapped[str] = mapped_column(String(32), default="system", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # at most one active code per display
        Index(
            "uq_qr_sessions_active_display", "display_id", unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index("ix_qr_sessions_status_created", "status", "created_at"),
    )

# Append-only scan ledger; *_snapshot columns are copied from the request and never re-derived
class Scan(Base):
    __tablename__ = "scans"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    qr_session_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    display_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    full_name_snapshot: Mapped[str] = mapped_column(String(255), nullable=False)
    job_title_snapshot: Mapped[str] = mapped_column(String(255), nullable=False)
    employee_id_snapshot: Mapped[str] = mapped_column(String(64), nullable=False)
    company_name_snapshot: Mapped[str | None] = mapped_column(String(255), nullable=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy: Mapped[float] = mapped_column(Float, nullable=False)
    image_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_scans_company_created", "company_id", "created_at"),
    )
