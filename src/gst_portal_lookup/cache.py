from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .models import CacheEntry, ExtractionRecord, utc_now


logger = logging.getLogger(__name__)


class CacheStore:
    """
    Flat JSON key-value store of verified records, keyed by normalized GSTIN.

    `created_at` is set on the first save for a key and never changes afterwards; `verified_at` and the record
    are refreshed on every save.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._backup_path = self.path.with_name(self.path.name + ".bak")

    def get(self, identifier: str) -> Optional[CacheEntry]:
        raw = self._read_all().get(identifier)
        if raw is None:
            return None
        try:
            return CacheEntry.model_validate(raw)
        except ValidationError:
            logger.warning("Ignoring malformed cache entry for %s", identifier)
            return None

    def save(self, record: ExtractionRecord, *, verified_at: Optional[datetime] = None) -> CacheEntry:
        identifier = (record.gstin or "").strip().upper()
        if not identifier:
            raise ValueError("Cannot cache a record without a GSTIN")

        now = verified_at or utc_now()
        data = self._read_all()
        created_at = now
        existing = data.get(identifier)
        if isinstance(existing, dict) and existing.get("created_at"):
            try:
                created_at = CacheEntry.model_validate(existing).created_at
            except ValidationError:
                logger.debug("Existing cache entry for %s unreadable; resetting created_at.", identifier)

        entry = CacheEntry(identifier=identifier, record=record, created_at=created_at, verified_at=now)
        data[identifier] = entry.model_dump(mode="json")
        self._write_all(data)
        logger.info("Cached %s (verified_at=%s)", identifier, now.isoformat())
        return entry

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        data = self._load(self.path)
        if data is not None:
            return data

        logger.warning("Cache file is corrupted/unreadable; attempting restore from backup: %s", self.path)
        self._quarantine()
        if self._backup_path.exists():
            data = self._load(self._backup_path)
            if data is not None:
                try:
                    shutil.copy2(self._backup_path, self.path)
                    logger.warning("Restored cache from backup: %s", self._backup_path)
                except Exception:
                    logger.debug("Failed to copy cache backup into place.", exc_info=True)
                return data
        logger.warning("No usable cache backup; starting with an empty cache.")
        return {}

    @staticmethod
    def _load(path: Path) -> Optional[dict]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except Exception:
            return None
        return data if isinstance(data, dict) else None

    def _write_all(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)
        try:
            shutil.copy2(self.path, self._backup_path)
        except Exception:
            logger.debug("Failed to refresh cache backup.", exc_info=True)

    def _quarantine(self) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        try:
            self.path.replace(self.path.with_name(self.path.name + f".corrupt-{stamp}"))
        except Exception:
            logger.debug("Failed to quarantine path=%s", self.path, exc_info=True)
