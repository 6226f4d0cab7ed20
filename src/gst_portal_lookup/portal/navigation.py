from __future__ import annotations

import logging
from typing import Any, Optional

from playwright.async_api import Error as PlaywrightError

from ..errors import InputNotFound, NavigationFailure
from ..util.diagnostics import save_page_artifacts
from .locators import first_visible, wait_for_first_visible
from .selectors import PortalSelectors


logger = logging.getLogger(__name__)


class NavigationController:
    """
    Drives the public search page: load it, type the GSTIN the way a person would, press Search.
    """

    def __init__(
        self,
        *,
        search_url: str,
        selectors: Optional[PortalSelectors] = None,
        navigation_timeout_ms: int = 60_000,
        settle_delay_ms: int = 5_000,
        input_timeout_ms: int = 10_000,
        debug_dir: str = "data/debug",
    ) -> None:
        self.search_url = search_url
        self.selectors = selectors or PortalSelectors()
        self.navigation_timeout_ms = navigation_timeout_ms
        self.settle_delay_ms = settle_delay_ms
        self.input_timeout_ms = input_timeout_ms
        self.debug_dir = debug_dir

    async def open_portal(self, page: Any) -> None:
        logger.info("Navigating to GST portal: %s", self.search_url)
        try:
            await page.goto(self.search_url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
        except Exception as e:
            raise NavigationFailure(f"Could not load the GST search page: {e}") from e

        if self.settle_delay_ms > 0:
            logger.debug("Waiting %dms for portal initialization", self.settle_delay_ms)
            await page.wait_for_timeout(self.settle_delay_ms)

    async def fill_identifier(self, page: Any, identifier: str) -> None:
        field = await wait_for_first_visible(
            page,
            self.selectors.identifier_inputs,
            timeout_ms=self.input_timeout_ms,
        )
        if field is None:
            artifacts = await save_page_artifacts(page, debug_dir=self.debug_dir, name_prefix="input_not_found")
            raise InputNotFound(
                f"GSTIN input not found (tried: {', '.join(self.selectors.identifier_inputs)})",
                artifacts=artifacts,
            )

        logger.info("Entering GSTIN...")
        try:
            await field.fill(identifier)
            await page.wait_for_timeout(500)
            # The portal only arms its own validation on key events, not on a programmatic value change.
            await field.click()
            await field.press("End")
            await page.keyboard.press("Space")
            await page.keyboard.press("Backspace")
        except PlaywrightError as e:
            artifacts = await save_page_artifacts(page, debug_dir=self.debug_dir, name_prefix="input_blocked")
            raise InputNotFound(f"Could not type into the GSTIN input: {e}", artifacts=artifacts) from e

    async def submit(self, page: Any) -> str:
        """Click the search button; falls back to Enter on the focused field. Returns which path was used."""
        for selector in self.selectors.submit_buttons:
            try:
                loc = page.locator(selector)
                if await loc.count() > 0:
                    await loc.first.click()
                    logger.info("Submitted search via %s", selector)
                    return selector
            except Exception:
                logger.debug("Submit candidate failed: %s", selector, exc_info=True)
                continue

        logger.info("No search button found; pressing Enter")
        try:
            await page.keyboard.press("Enter")
        except PlaywrightError as e:
            raise NavigationFailure(f"Could not submit the search: {e}") from e
        return "Enter"

    async def read_error_banner(self, page: Any) -> Optional[str]:
        """Text of a visible portal error banner, or None."""
        banner = await first_visible(page, (self.selectors.error_banners,))
        if banner is None:
            return None
        try:
            text = (await banner.inner_text() or "").strip()
        except Exception:
            return None
        return text or None
