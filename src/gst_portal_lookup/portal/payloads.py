from __future__ import annotations

from typing import Any, Optional

from ..models import ExtractionRecord, InterceptedPayload
from ..util.dates import parse_portal_date


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        parts = [str(v).strip() for v in value if v not in (None, "")]
        return ", ".join(parts) or None
    s = str(value).strip()
    return s or None


def _text_list(value: Any) -> Optional[list[str]]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        out = [str(v).strip() for v in value if str(v).strip()]
        return out or None
    s = str(value).strip()
    return [s] if s else None


def _address(pradr: Any) -> Optional[str]:
    # taxpayerDetails returns {"pradr": {"adr": "...", "addr": {...}}}; older payloads put the string directly.
    if isinstance(pradr, dict):
        return _text(pradr.get("adr"))
    return _text(pradr)


def record_from_payloads(
    primary: InterceptedPayload,
    secondary: Optional[InterceptedPayload] = None,
    *,
    identifier: Optional[str] = None,
) -> ExtractionRecord:
    """Map the portal's taxpayerDetails (+ goodservice) JSON onto an ExtractionRecord."""
    body = primary.body if isinstance(primary.body, dict) else {}
    goods: Optional[list[dict]] = None
    if secondary is not None and isinstance(secondary.body, dict):
        raw = secondary.body.get("bzgddtls")
        if isinstance(raw, list):
            goods = [g for g in raw if isinstance(g, dict)] or None

    effective = _text(body.get("rgdt"))
    return ExtractionRecord(
        gstin=_text(body.get("gstin")) or identifier,
        legal_name=_text(body.get("lgnm")),
        trade_name=_text(body.get("tradeNam")),
        address=_address(body.get("pradr")),
        status=_text(body.get("sts")),
        effective_date=effective,
        effective_on=parse_portal_date(effective),
        constitution=_text(body.get("ctb")),
        taxpayer_type=_text(body.get("dty")),
        jurisdiction=_text(body.get("stj")),
        center_jurisdiction=_text(body.get("ctj")),
        registration_date=effective,
        cancellation_date=_text(body.get("cxdt")),
        nature_of_business=_text_list(body.get("nba")),
        composition_rate=_text(body.get("cmpRt")),
        aadhaar_verified=_text(body.get("adhrVFlag")),
        aadhaar_verification_date=_text(body.get("adhrVdt")),
        ekyc_verified=_text(body.get("ekycVFlag")),
        e_invoice_status=_text(body.get("einvoiceStatus")),
        field_visit_conducted=_text(body.get("isFieldVisitConducted")),
        nature_of_contact=_text(body.get("ntcrbs")),
        goods_services=goods,
        source="network",
    )
