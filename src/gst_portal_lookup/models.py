from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator


TARGET_FIELDS: tuple[str, ...] = ("legal_name", "trade_name", "address")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LookupRequest(BaseModel):
    model_config = {"frozen": True}

    identifier: str

    @field_validator("identifier")
    @classmethod
    def _normalize(cls, v: str) -> str:
        return (v or "").strip().upper()


class Challenge(BaseModel):
    detected: bool = False
    # data:image/png;base64,... when captured
    image: Optional[str] = None


class PayloadKind(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class InterceptedPayload(BaseModel):
    kind: PayloadKind
    url: str = ""
    body: Any = None


class ExtractionRecord(BaseModel):
    """
    Business-registration details for one GSTIN. Every field is independently nullable; None means
    "not found", never an error.
    """

    gstin: Optional[str] = None

    legal_name: Optional[str] = None
    trade_name: Optional[str] = None
    address: Optional[str] = None
    status: Optional[str] = None
    effective_date: Optional[str] = None
    effective_on: Optional[date] = None

    constitution: Optional[str] = None
    taxpayer_type: Optional[str] = None
    jurisdiction: Optional[str] = None
    center_jurisdiction: Optional[str] = None
    registration_date: Optional[str] = None
    cancellation_date: Optional[str] = None
    nature_of_business: Optional[list[str]] = None
    composition_rate: Optional[str] = None
    aadhaar_verified: Optional[str] = None
    aadhaar_verification_date: Optional[str] = None
    ekyc_verified: Optional[str] = None
    e_invoice_status: Optional[str] = None
    field_visit_conducted: Optional[str] = None
    nature_of_contact: Optional[str] = None
    goods_services: Optional[list[dict[str, Any]]] = None

    source: Literal["network", "dom"] = "network"

    def has_target_fields(self) -> bool:
        return any(getattr(self, name) for name in TARGET_FIELDS)


class ChallengeResult(BaseModel):
    status: Literal["challenge"] = "challenge"
    image: str


class CacheEntry(BaseModel):
    identifier: str
    record: ExtractionRecord
    created_at: datetime
    verified_at: datetime


class VerifyResponse(BaseModel):
    identifier: str
    legal_name: Optional[str] = None
    trade_name: Optional[str] = None
    address: Optional[str] = None
    status: Optional[str] = None
    verified_at: datetime
    cached: bool = False

    @classmethod
    def from_entry(cls, entry: CacheEntry, *, cached: bool) -> "VerifyResponse":
        r = entry.record
        return cls(
            identifier=entry.identifier,
            legal_name=r.legal_name,
            trade_name=r.trade_name,
            address=r.address,
            status=r.status,
            verified_at=entry.verified_at,
            cached=cached,
        )


class ChallengeResponse(BaseModel):
    status: Literal["challenge"] = "challenge"
    identifier: str
    image: str


class LookupFailure(BaseModel):
    error: str
    message: str
    identifier: Optional[str] = None
    suggestion: str = ""
    artifacts: list[str] = Field(default_factory=list)
