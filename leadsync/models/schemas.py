# leadsync/models/schemas.py
from datetime import datetime, timezone
import time
from typing import Optional, Dict, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

LeadStatus = Literal[
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
]
LeadType = Literal["inbound", "outbound"]
SourceChannel = Literal["cold_call", "inbound_call", "web_form", "email_campaign", "manual", "other"]
CallResult = Literal["appointment_booked", "unsuccessful"]
ActionType = Literal["start_calling", "start_qualifying", "stop_calling", "stop_qualifying"]
LogStatus = Literal["success", "failed"]
ChangeType = Literal["insert", "update", "delete"]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------- Records (read replicas, change-event images, HTTP bodies) ----------
class RecordBase(BaseModel):
    model_config = ConfigDict(extra="ignore", from_attributes=True)

    id: str
    user_id: Optional[str] = None
    created_at: datetime

    @field_validator("created_at", mode="after")
    @classmethod
    def _created_utc(cls, v):
        return _as_utc(v)


class LeadRecord(RecordBase):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    status: LeadStatus = "cold"
    lead_type: LeadType = "outbound"
    source_channel: Optional[SourceChannel] = None
    call_result: Optional[CallResult] = None
    qualified: bool = False
    transcript: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime

    @field_validator("updated_at", mode="after")
    @classmethod
    def _updated_utc(cls, v):
        return _as_utc(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_map(cls, v):
        return v or {}


class TriggerRecord(RecordBase):
    start_calling: bool = False
    start_qualifying: bool = False
    updated_by: Optional[str] = None
    updated_at: datetime

    @field_validator("updated_at", mode="after")
    @classmethod
    def _updated_utc(cls, v):
        return _as_utc(v)


class AutomationLogRecord(RecordBase):
    action_type: ActionType
    status: LogStatus
    details: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("details", mode="before")
    @classmethod
    def _details_map(cls, v):
        return v or {}


RECORD_TYPES = {
    "leads": LeadRecord,
    "triggers": TriggerRecord,
    "automation_logs": AutomationLogRecord,
}


# ---------- Change feed ----------
class ChangeEvent(BaseModel):
    """One row-level change. `new` is the post-image, `old` the pre-image (delete)."""

    table: str
    type: ChangeType
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None
    ts: float = Field(default_factory=time.time)

    @property
    def record_id(self) -> Optional[str]:
        image = self.new if self.type != "delete" else self.old
        return (image or {}).get("id")


# ---------- Lead writes ----------
class LeadCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = None
    phone: Optional[str] = None
    status: LeadStatus = "cold"
    lead_type: LeadType = "outbound"
    source_channel: Optional[SourceChannel] = None


class LeadUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[LeadStatus] = None
    lead_type: Optional[LeadType] = None
    source_channel: Optional[SourceChannel] = None
    call_result: Optional[CallResult] = None
    qualified: Optional[bool] = None


# ---------- Webhook ----------
class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    lead_id: Optional[str] = None
    # Validated by the handler so bad values map to the documented 400 body
    status: Optional[str] = None
    action_type: Optional[str] = None  # "calling" | "qualifying"
    transcript: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    user_id: Optional[str] = None


class Notification(BaseModel):
    type: Literal["success", "error"]
    message: str
