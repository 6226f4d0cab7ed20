from __future__ import annotations

import logging
import re
from typing import Union

from .cache import CacheStore
from .errors import InvalidIdentifier, PortalLookupError
from .models import ChallengeResponse, ChallengeResult, ExtractionRecord, LookupFailure, VerifyResponse
from .portal.client import GstPortalClient


logger = logging.getLogger(__name__)


GSTIN_PATTERN = re.compile(r"^[0-9A-Z]{15}$")

VerifyOutcome = Union[VerifyResponse, ChallengeResponse, LookupFailure]


def normalize_identifier(raw: str) -> str:
    gstin = (raw or "").strip().upper()
    if not GSTIN_PATTERN.match(gstin):
        raise InvalidIdentifier(f"Invalid GSTIN {raw!r}: expected 15 letters/digits")
    return gstin


UNEXPECTED_SUGGESTION = (
    "The lookup failed unexpectedly. Retry; if it keeps failing, run `gst-portal-lookup debug-bundle` and "
    "inspect the log."
)


def _failure(e: Exception, identifier: Union[str, None]) -> LookupFailure:
    if isinstance(e, PortalLookupError):
        return LookupFailure(
            error=type(e).__name__,
            message=str(e),
            identifier=identifier,
            suggestion=e.suggestion,
            artifacts=[str(p) for p in e.artifacts],
        )
    return LookupFailure(
        error="UnexpectedError",
        message=f"{type(e).__name__}: {e}",
        identifier=identifier,
        suggestion=UNEXPECTED_SUGGESTION,
    )


class VerificationService:
    """
    Cache-first front door for GSTIN verification.

    A cache hit never touches the browser. A miss runs one lookup; a terminal record is written to the cache
    exactly once. Portal failures come back as `LookupFailure` rather than exceptions.
    """

    def __init__(self, client: GstPortalClient, cache: CacheStore) -> None:
        self.client = client
        self.cache = cache

    async def verify(self, identifier: str) -> VerifyOutcome:
        try:
            gstin = normalize_identifier(identifier)
        except InvalidIdentifier as e:
            return LookupFailure(
                error="InvalidIdentifier",
                message=str(e),
                identifier=(identifier or "").strip().upper() or None,
                suggestion="A GSTIN is 15 characters: 2-digit state code, 10-character PAN, entity code, Z, checksum.",
            )

        cached = self.cache.get(gstin)
        if cached is not None:
            logger.info("Cache hit for %s (verified_at=%s)", gstin, cached.verified_at.isoformat())
            return VerifyResponse.from_entry(cached, cached=True)

        try:
            outcome = await self.client.lookup(gstin)
        except PortalLookupError as e:
            logger.error("Lookup failed for %s: %s", gstin, e)
            return _failure(e, gstin)
        except Exception as e:
            logger.exception("Unexpected error while looking up %s", gstin)
            return _failure(e, gstin)

        if isinstance(outcome, ChallengeResult):
            return ChallengeResponse(identifier=gstin, image=outcome.image)
        return self._store(gstin, outcome)

    async def resume(self, solution: str) -> Union[VerifyResponse, LookupFailure]:
        gstin = self.client.pending_identifier
        try:
            record = await self.client.resume(solution)
        except PortalLookupError as e:
            logger.error("CAPTCHA resume failed for %s: %s", gstin or "<none>", e)
            return _failure(e, gstin)
        except Exception as e:
            logger.exception("Unexpected error while resuming %s", gstin or "<none>")
            return _failure(e, gstin)
        return self._store(gstin or record.gstin or "", record)

    def _store(self, gstin: str, record: ExtractionRecord) -> VerifyResponse:
        entry = self.cache.save(record.model_copy(update={"gstin": gstin}))
        return VerifyResponse.from_entry(entry, cached=False)
