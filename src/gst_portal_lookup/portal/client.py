from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from ..config import AppConfig
from ..errors import EmptyExtraction, PayloadTimeout, PortalLookupError, SessionExpired
from ..models import ChallengeResult, ExtractionRecord, LookupRequest
from ..util.diagnostics import save_page_artifacts
from .captcha import CaptchaGate, build_captcha_gate
from .extraction import ExtractionEngine
from .interceptor import AttemptCapture, ResponseInterceptor
from .navigation import NavigationController
from .payloads import record_from_payloads
from .selectors import PortalSelectors
from .session import SessionManager


logger = logging.getLogger(__name__)


LookupOutcome = Union[ExtractionRecord, ChallengeResult]


@dataclass
class _PendingChallenge:
    request: LookupRequest
    capture: AttemptCapture


class GstPortalClient:
    """
    One attempt = open portal -> type GSTIN -> CAPTCHA gate -> submit -> API payload (or DOM extraction).

    Attempts are retried with a fixed backoff up to `max_attempts`; when the budget is spent a timestamped
    screenshot + markup pair is written and the last error is raised with those paths attached.

    Not safe for concurrent lookups: one page drives one lookup at a time, callers must serialize.
    """

    def __init__(
        self,
        *,
        session: SessionManager,
        navigator: NavigationController,
        gate: CaptchaGate,
        interceptor: ResponseInterceptor,
        extractor: ExtractionEngine,
        max_attempts: int = 3,
        backoff_seconds: float = 3,
        payload_timeout_ms: int = 15_000,
        payload_poll_ms: int = 500,
        secondary_grace_ms: int = 1_500,
        debug_dir: str = "data/debug",
    ) -> None:
        self.session = session
        self.navigator = navigator
        self.gate = gate
        self.interceptor = interceptor
        self.extractor = extractor
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_seconds = backoff_seconds
        self.payload_timeout_ms = payload_timeout_ms
        self.payload_poll_ms = payload_poll_ms
        self.secondary_grace_ms = secondary_grace_ms
        self.debug_dir = debug_dir
        self._pending: Optional[_PendingChallenge] = None

    @classmethod
    def from_config(cls, cfg: AppConfig, *, selectors: Optional[PortalSelectors] = None) -> "GstPortalClient":
        sel = selectors or PortalSelectors()
        session = SessionManager(
            cookies_path=cfg.browser.cookies_path,
            headless=cfg.browser.headless,
            slow_mo_ms=cfg.browser.slow_mo_ms,
            viewport=(cfg.browser.viewport_width, cfg.browser.viewport_height),
        )
        return cls(
            session=session,
            navigator=NavigationController(
                search_url=cfg.portal.search_url,
                selectors=sel,
                navigation_timeout_ms=cfg.portal.navigation_timeout_ms,
                settle_delay_ms=cfg.portal.settle_delay_ms,
                input_timeout_ms=cfg.portal.input_timeout_ms,
                debug_dir=cfg.diagnostics.debug_dir,
            ),
            gate=build_captcha_gate(
                session,
                headless=cfg.browser.headless,
                selectors=sel,
                probe_delay_ms=cfg.portal.challenge_probe_delay_ms,
                poll_interval_seconds=cfg.captcha.poll_interval_seconds,
                timeout_seconds=cfg.captcha.timeout_seconds,
            ),
            interceptor=ResponseInterceptor(
                primary_pattern=cfg.portal.primary_api_pattern,
                secondary_pattern=cfg.portal.secondary_api_pattern,
            ),
            extractor=ExtractionEngine(selectors=sel, markup_dump_path=cfg.diagnostics.markup_dump_path),
            max_attempts=cfg.retry.max_attempts,
            backoff_seconds=cfg.retry.backoff_seconds,
            payload_timeout_ms=cfg.retry.payload_timeout_ms,
            payload_poll_ms=cfg.retry.payload_poll_ms,
            secondary_grace_ms=cfg.retry.secondary_grace_ms,
            debug_dir=cfg.diagnostics.debug_dir,
        )

    @property
    def pending_identifier(self) -> Optional[str]:
        return self._pending.request.identifier if self._pending else None

    def _abandon_pending(self) -> None:
        if self._pending is not None:
            logger.info("Abandoning pending CAPTCHA for %s", self._pending.request.identifier)
            self._pending.capture.teardown()
            self._pending = None

    async def lookup(self, identifier: str) -> LookupOutcome:
        request = LookupRequest(identifier=identifier)
        self._abandon_pending()

        last_error: Optional[PortalLookupError] = None
        for attempt in range(1, self.max_attempts + 1):
            logger.info("Lookup %s: attempt %d/%d", request.identifier, attempt, self.max_attempts)
            try:
                outcome = await self._attempt(request)
            except SessionExpired:
                raise
            except PortalLookupError as e:
                last_error = e
                logger.warning(
                    "Lookup %s: attempt %d/%d failed (%s: %s)",
                    request.identifier,
                    attempt,
                    self.max_attempts,
                    type(e).__name__,
                    e,
                )
                if attempt < self.max_attempts and self.backoff_seconds > 0:
                    await asyncio.sleep(self.backoff_seconds)
                continue

            if isinstance(outcome, ChallengeResult):
                logger.info("Lookup %s: waiting for CAPTCHA solution from caller", request.identifier)
            else:
                logger.info("Lookup %s: success (source=%s)", request.identifier, outcome.source)
            return outcome

        if last_error is None:
            raise RuntimeError(f"Lookup {request.identifier} made no attempts")
        logger.error("Lookup %s: retry budget exhausted", request.identifier)
        last_error.add_artifacts(await self._exhaustion_diagnostics("retries_exhausted"))
        raise last_error

    async def _attempt(self, request: LookupRequest) -> LookupOutcome:
        page = await self.session.ensure_page()
        # Armed before navigation so the search XHRs can't slip past.
        capture = self.interceptor.register_for_attempt(page)
        keep_capture = False
        try:
            await self.navigator.open_portal(page)
            await self.navigator.fill_identifier(page, request.identifier)

            if self.gate.suspends_attempt:
                challenge = await self.gate.detect(page)
                if challenge.detected and challenge.image:
                    self._pending = _PendingChallenge(request=request, capture=capture)
                    keep_capture = True
                    return ChallengeResult(image=challenge.image)
                logger.info("No CAPTCHA detected; searching directly")
            else:
                await self.gate.resolve(page)

            await self.navigator.submit(page)
            return await self._collect(page, request, capture)
        finally:
            if not keep_capture:
                capture.teardown()

    async def resume(self, solution: str) -> ExtractionRecord:
        """Second half of a lookup that returned a CAPTCHA; a single attempt, no retries."""
        pending = self._pending
        self._pending = None
        if pending is None:
            raise SessionExpired("No CAPTCHA is pending for this session. Please start over.")

        page = self.session.page
        closed = True
        if page is not None:
            try:
                closed = page.is_closed()
            except Exception:
                closed = True
        if closed or pending.capture.closed:
            pending.capture.teardown()
            raise SessionExpired("Browser session expired or closed. Please start over.")

        try:
            await self.gate.resolve(page, solution)
            await self.navigator.submit(page)
            record = await self._collect(page, pending.request, pending.capture)
        except PortalLookupError as e:
            e.add_artifacts(await self._exhaustion_diagnostics("resume_failed"))
            raise
        finally:
            pending.capture.teardown()

        await self.session.save_cookies()
        logger.info("Lookup %s: success after CAPTCHA (source=%s)", pending.request.identifier, record.source)
        return record

    async def _collect(self, page, request: LookupRequest, capture: AttemptCapture) -> ExtractionRecord:
        try:
            primary = await capture.await_primary(
                self.payload_timeout_ms,
                poll_ms=self.payload_poll_ms,
                banner_probe=self.navigator.read_error_banner,
            )
        except PayloadTimeout:
            logger.info("No API payload; falling back to page extraction")
            record = await self.extractor.extract(page, identifier=request.identifier)
            if record.has_target_fields():
                return record
            raise

        secondary = await capture.await_secondary(self.secondary_grace_ms)
        record = record_from_payloads(primary, secondary, identifier=request.identifier)
        if record.has_target_fields():
            return record

        logger.info("API payload had no business details; falling back to page extraction")
        record = await self.extractor.extract(page, identifier=request.identifier, base=record)
        if not record.has_target_fields():
            raise EmptyExtraction(
                "Could not extract business details from the portal response or page.",
                artifacts=[self.extractor.last_dump] if self.extractor.last_dump else None,
            )
        return record

    async def _exhaustion_diagnostics(self, name_prefix: str) -> list[Path]:
        page = self.session.page
        if page is None:
            return []
        return await save_page_artifacts(page, debug_dir=self.debug_dir, name_prefix=name_prefix)

    async def close(self) -> None:
        self._abandon_pending()
        self.interceptor.teardown()
        await self.session.close()
