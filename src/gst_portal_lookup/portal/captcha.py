from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, Optional, Protocol

from ..models import Challenge
from .locators import first_visible
from .selectors import PortalSelectors
from .session import SessionManager


logger = logging.getLogger(__name__)


class CaptchaGate(Protocol):
    """
    One contract, two interchangeable strategies picked at construction time.

    `suspends_attempt` tells the orchestrator whether a detected challenge ends the current call (handoff to
    the caller, answer arrives later through `resolve`) or is resolved in place by blocking.
    """

    suspends_attempt: bool

    async def detect(self, page: Any) -> Challenge: ...

    async def resolve(self, page: Any, solution: Optional[str] = None) -> bool: ...


class OffscreenCaptchaGate:
    """Headless mode: screenshot the CAPTCHA, hand it to the caller, fill in the answer when it comes back."""

    suspends_attempt = True

    def __init__(
        self,
        session: SessionManager,
        *,
        selectors: Optional[PortalSelectors] = None,
        probe_delay_ms: int = 2_000,
    ) -> None:
        self.session = session
        self.selectors = selectors or PortalSelectors()
        self.probe_delay_ms = probe_delay_ms

    async def detect(self, page: Any) -> Challenge:
        logger.info("Checking for CAPTCHA...")
        if self.probe_delay_ms > 0:
            await page.wait_for_timeout(self.probe_delay_ms)

        try:
            element = await first_visible(page, self.selectors.captcha_images)
            if element is None:
                return Challenge(detected=False)
            await element.scroll_into_view_if_needed()
            png = await element.screenshot(type="png")
        except Exception as e:
            logger.error("Error capturing CAPTCHA: %s", e)
            return Challenge(detected=False)

        image = "data:image/png;base64," + base64.b64encode(png).decode("ascii")
        logger.info("CAPTCHA detected; returning image to caller")
        return Challenge(detected=True, image=image)

    async def resolve(self, page: Any, solution: Optional[str] = None) -> bool:
        answer = await first_visible(page, self.selectors.captcha_answer_inputs)
        if answer is None:
            logger.info("CAPTCHA input not found; it may have disappeared or is no longer needed.")
            return False
        logger.info("Submitting CAPTCHA solution")
        await answer.fill(solution or "")
        return True


class InteractiveCaptchaGate:
    """
    Visible-window mode: a person solves the challenge in the browser while we poll.

    Gives up after `timeout_seconds` and lets the lookup proceed anyway; if the page is still blocked the
    downstream wait/extraction reports it.
    """

    suspends_attempt = False

    def __init__(
        self,
        session: SessionManager,
        *,
        selectors: Optional[PortalSelectors] = None,
        poll_interval_seconds: float = 2,
        timeout_seconds: float = 300,
    ) -> None:
        self.session = session
        self.selectors = selectors or PortalSelectors()
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds

    async def detect(self, page: Any) -> Challenge:
        return Challenge(detected=await self._indicators_present(page))

    async def resolve(self, page: Any, solution: Optional[str] = None) -> bool:
        deadline = time.monotonic() + self.timeout_seconds
        prompted = False
        while True:
            if await self._indicators_present(page):
                if not prompted:
                    logger.info(
                        "CAPTCHA shown; solve it in the browser window (waiting up to %.0fs)...",
                        self.timeout_seconds,
                    )
                    prompted = True
            elif await self._input_ready(page):
                if prompted:
                    logger.info("CAPTCHA cleared")
                # Persist right away; a reload before the next clean shutdown would lose the cleared state.
                await self.session.save_cookies()
                return True

            if time.monotonic() >= deadline:
                logger.warning("Timed out waiting for CAPTCHA clearance; proceeding anyway.")
                return False
            await asyncio.sleep(self.poll_interval_seconds)

    async def _indicators_present(self, page: Any) -> bool:
        if await first_visible(page, self.selectors.captcha_indicators) is not None:
            return True
        try:
            body = (await page.inner_text("body") or "").lower()
        except Exception:
            return False
        return any(hint in body for hint in self.selectors.captcha_text_hints)

    async def _input_ready(self, page: Any) -> bool:
        field = await first_visible(page, self.selectors.identifier_inputs)
        if field is None:
            return False
        try:
            return bool(await field.is_enabled())
        except Exception:
            return False


def build_captcha_gate(
    session: SessionManager,
    *,
    headless: bool,
    selectors: Optional[PortalSelectors] = None,
    probe_delay_ms: int = 2_000,
    poll_interval_seconds: float = 2,
    timeout_seconds: float = 300,
) -> CaptchaGate:
    if headless:
        return OffscreenCaptchaGate(session, selectors=selectors, probe_delay_ms=probe_delay_ms)
    return InteractiveCaptchaGate(
        session,
        selectors=selectors,
        poll_interval_seconds=poll_interval_seconds,
        timeout_seconds=timeout_seconds,
    )
