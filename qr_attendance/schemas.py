from __future__ import annotations
from typing import Annotated, Literal
from uuid import UUID
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .core.config import get_settings
from .models import as_utc

settings = get_settings()

Str255 = Annotated[str, Field(min_length=1, max_length=255)]

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

# ---- QR sessions ----
class QrIssueRequest(CamelModel):
    display_id: str | None = Field(default=None, max_length=64)
    company_id: str | None = Field(default=None, max_length=64)

class IssuedQr(CamelModel):
    token: str
    expires_at_hint: datetime | None = None  # None when time-based expiry is off
    qr_image_data_url: str

class ValidateResponse(CamelModel):
    valid: bool
    error: str | None = None

# ---- Scans ----
class ScanCreate(CamelModel):
    # lat/lng/accuracy must be finite
    model_config = ConfigDict(str_strip_whitespace=True, allow_inf_nan=False)

    token: str = Field(min_length=8)
    full_name: Str255
    job_title: Str255
    employee_id: Annotated[str, Field(min_length=1, max_length=64)]
    type: Literal["check-in", "check-out"]
    lat: float
    lng: float
    accuracy: float
    image_data: str | None = None

    @field_validator("image_data")
    @classmethod
    def _check_image(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if len(v) > settings.max_image_bytes:
            raise ValueError("image too large")
        if not v.startswith("data:image/"):
            raise ValueError("imageData must be a data URL")
        return v

class ScanRead(CamelModel):
    id: UUID
    qr_session_id: UUID
    display_id: str
    company_id: str | None = None
    full_name_snapshot: str
    job_title_snapshot: str
    employee_id_snapshot: str
    company_name_snapshot: str | None = None
    type: str
    lat: float
    lng: float
    accuracy: float
    image_ref: str | None = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

class ScanList(BaseModel):
    data: list[ScanRead]

class ScanStats(CamelModel):
    total: int
    check_ins: int
    check_outs: int
    today: int

class ErrorResponse(BaseModel):
    error: str
    details: list[dict] | None = None

# ---- Directory ----
class CompanyRead(CamelModel):
    id: str
    name: str
    employee_count: int
    location_label: str | None = None
    logo: str | None = None

class DisplayRead(CamelModel):
    id: str
    company_id: str | None = None
    label: str
