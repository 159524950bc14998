# leadsync/models/orm.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from leadsync.core.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


LEAD_STATUSES = (
    "hot",
    "warm",
    "cold",
    "uninterested",
    "qualified",
    "unqualified",
    "called",
    "texted",
    "interested",
    "not_interested",
)
LEAD_TYPES = ("inbound", "outbound")
CALL_RESULTS = ("appointment_booked", "unsuccessful")
ACTION_TYPES = ("start_calling", "start_qualifying", "stop_calling", "stop_qualifying")
LOG_STATUSES = ("success", "failed")


def _in(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


# ---------- Leads ----------
class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    name: Mapped[str] = mapped_column(String(200))
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="cold")
    lead_type: Mapped[str] = mapped_column(String(10), default="outbound")
    # Defaults follow lead_type on creation only; editable independently afterwards
    source_channel: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    call_result: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    qualified: Mapped[bool] = mapped_column(Boolean, default=False)

    transcript: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # `metadata` is reserved on declarative classes
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint(_in("status", LEAD_STATUSES), name="chk_leads_status"),
        CheckConstraint(_in("lead_type", LEAD_TYPES), name="chk_leads_type"),
        Index("ix_leads_user_created", "user_id", "created_at"),
    )


# ---------- Trigger (singleton per deployment) ----------
class Trigger(Base):
    __tablename__ = "triggers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    start_calling: Mapped[bool] = mapped_column(Boolean, default=False)
    start_qualifying: Mapped[bool] = mapped_column(Boolean, default=False)

    updated_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ---------- Automation audit log (append-only) ----------
class AutomationLog(Base):
    __tablename__ = "automation_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    action_type: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(10))
    details: Mapped[dict] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint(_in("action_type", ACTION_TYPES), name="chk_logs_action"),
        CheckConstraint(_in("status", LOG_STATUSES), name="chk_logs_status"),
        Index("ix_logs_user_created", "user_id", "created_at"),
    )
