from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from gst_portal_lookup.cache import CacheStore
from gst_portal_lookup.models import ExtractionRecord


def _record(**kw) -> ExtractionRecord:
    base = {"gstin": "27ABCDE1234F1Z5", "legal_name": "ACME PRIVATE LIMITED", "status": "Active"}
    base.update(kw)
    return ExtractionRecord(**base)


def test_get_missing_returns_none(tmp_path: Path) -> None:
    store = CacheStore(str(tmp_path / "cache.json"))
    assert store.get("27ABCDE1234F1Z5") is None


def test_repeated_save_keeps_created_at_and_refreshes_rest(tmp_path: Path) -> None:
    store = CacheStore(str(tmp_path / "cache.json"))
    t0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
    t1 = t0 + timedelta(days=3)

    first = store.save(_record(), verified_at=t0)
    second = store.save(_record(status="Cancelled", trade_name="ACME"), verified_at=t1)

    assert first.created_at == t0
    assert second.created_at == t0
    assert second.verified_at == t1

    got = store.get("27ABCDE1234F1Z5")
    assert got is not None
    assert got.created_at == t0
    assert got.verified_at == t1
    assert got.record.status == "Cancelled"
    assert got.record.trade_name == "ACME"


def test_save_normalizes_key_and_requires_gstin(tmp_path: Path) -> None:
    store = CacheStore(str(tmp_path / "cache.json"))
    store.save(_record(gstin=" 27abcde1234f1z5 "))
    assert store.get("27ABCDE1234F1Z5") is not None

    with pytest.raises(ValueError):
        store.save(ExtractionRecord(legal_name="No Key Traders"))


def test_writes_backup_and_restores_from_it(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    store = CacheStore(str(path))
    store.save(_record())

    bak = tmp_path / "cache.json.bak"
    assert bak.exists()

    path.write_text("{not json", encoding="utf-8")
    got = store.get("27ABCDE1234F1Z5")
    assert got is not None
    assert got.record.legal_name == "ACME PRIVATE LIMITED"
    assert list(tmp_path.glob("cache.json.corrupt-*"))
    assert json.loads(path.read_text(encoding="utf-8"))


def test_corrupt_without_backup_starts_empty(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")
    store = CacheStore(str(path))
    assert store.get("27ABCDE1234F1Z5") is None

    store.save(_record())
    assert store.get("27ABCDE1234F1Z5") is not None
