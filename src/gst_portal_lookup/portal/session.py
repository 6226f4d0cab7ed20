from __future__ import annotations

import asyncio
import json
import logging
import shutil
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from playwright.async_api import async_playwright


logger = logging.getLogger(__name__)


_USER_AGENTS = {
    "win32": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    ),
    "linux": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    ),
    "darwin": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    ),
}

LAUNCH_ARGS: tuple[str, ...] = (
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
)


def platform_user_agent(platform: Optional[str] = None) -> str:
    plat = platform or sys.platform
    if plat.startswith("linux"):
        plat = "linux"
    return _USER_AGENTS.get(plat, _USER_AGENTS["win32"])


class SessionManager:
    """
    Owns the Playwright browser, its single context and the one live page, plus the cookie jar on disk.

    Closing the page (e.g. the operator closes the visible window) flips the manager back to
    "uninitialized"; the next `ensure_page()` opens a fresh page transparently.
    """

    def __init__(
        self,
        *,
        cookies_path: str,
        headless: bool = True,
        slow_mo_ms: int = 0,
        viewport: tuple[int, int] = (1280, 720),
        user_agent: Optional[str] = None,
        playwright_factory: Callable[[], Any] = async_playwright,
    ) -> None:
        self.cookies_path = Path(cookies_path) if cookies_path else None
        self.headless = headless
        self.slow_mo_ms = int(slow_mo_ms or 0)
        self.viewport = viewport
        self.user_agent = user_agent or platform_user_agent()
        self._playwright_factory = playwright_factory

        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._page: Any = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def page(self) -> Any:
        return self._page

    def _browser_alive(self) -> bool:
        try:
            return self._browser is not None and self._browser.is_connected()
        except Exception:
            return False

    async def initialize(self) -> None:
        if self._initialized and self._browser_alive() and self._page is not None:
            return

        if self._browser_alive() and self._context is not None:
            # Browser survived; only the page went away.
            try:
                await self._open_page()
                self._initialized = True
                return
            except Exception:
                logger.warning("Could not open a new page on the existing context; relaunching.", exc_info=True)

        await self._release()

        logger.info("Launching browser (headless=%s)...", self.headless)
        self._playwright = await self._playwright_factory().start()
        self._browser = await self._launch_browser()

        cookies = self._load_cookies()
        self._context = await self._browser.new_context(
            viewport={"width": self.viewport[0], "height": self.viewport[1]},
            user_agent=self.user_agent,
        )
        if cookies:
            try:
                await self._context.add_cookies(cookies)
            except Exception:
                logger.warning("Stored cookies were rejected by the browser; continuing with a fresh session.")

        await self._open_page()
        self._initialized = True
        logger.info("Browser initialized")

    async def _launch_browser(self) -> Any:
        chromium = self._playwright.chromium
        launch_kwargs: dict = {
            "headless": self.headless,
            "slow_mo": self.slow_mo_ms,
            "args": list(LAUNCH_ARGS),
        }
        try:
            return await chromium.launch(**launch_kwargs)
        except Exception as e:
            msg = str(e)
            if "Executable doesn't exist" not in msg:
                raise
            logger.warning(
                "Playwright Chromium executable missing; falling back to system browser channel. (%s)",
                msg,
            )
            try:
                return await chromium.launch(channel="chrome", **launch_kwargs)
            except Exception:
                return await chromium.launch(channel="msedge", **launch_kwargs)

    async def _open_page(self) -> Any:
        page = await self._context.new_page()
        self._attach_page(page)
        return page

    def _attach_page(self, page: Any) -> None:
        self._page = page
        page.on("close", lambda _page=None: self._on_page_closed(page))

    def _on_page_closed(self, page: Any) -> None:
        if page is not self._page:
            return
        logger.info("Page was closed; it will be re-created on the next lookup.")
        self._page = None
        self._initialized = False

    async def ensure_page(self) -> Any:
        """Return the live page, (re)initializing the session if needed."""
        page = self._page
        closed = True
        if page is not None:
            try:
                closed = page.is_closed()
            except Exception:
                closed = True
        if not self._initialized or closed:
            if page is not None and closed:
                self._page = None
            await self.initialize()
        return self._page

    def _load_cookies(self) -> list[dict]:
        path = self.cookies_path
        if path is None or not path.exists():
            return []
        cookies = _read_cookie_file(path)
        if cookies is not None:
            logger.info("Loaded %d saved cookies", len(cookies))
            return cookies

        logger.warning("Cookie file is invalid; ignoring it and attempting restore from backup: %s", path)
        _quarantine_file(path, prefix="cookies")
        bak = _backup_path(path)
        if bak.exists():
            cookies = _read_cookie_file(bak)
            if cookies is not None:
                try:
                    shutil.copy2(bak, path)
                except Exception:
                    logger.debug("Failed to copy cookie backup into place.", exc_info=True)
                logger.warning("Restored %d cookies from backup: %s", len(cookies), bak)
                return cookies
        logger.info("Starting a fresh session (no usable cookies)")
        return []

    async def save_cookies(self) -> Optional[Path]:
        """
        Snapshot the context cookie jar to disk (plus a last-known-good `.bak`). Failures are logged only;
        stale cookies just mean the next session has to clear a CAPTCHA again.
        """
        if self._context is None or self.cookies_path is None:
            return None
        path = self.cookies_path
        try:
            cookies = await self._context.cookies()
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_text(json.dumps(list(cookies), indent=2), encoding="utf-8")
            tmp.replace(path)
            shutil.copy2(path, _backup_path(path))
            logger.info("Saved %d cookies for future sessions", len(cookies))
            return path
        except Exception as e:
            logger.error("Error saving cookies: %s", e)
            return None

    async def keep_alive(self) -> None:
        """
        Heartbeat: make sure a page exists without touching page content. Any inconsistency triggers a full
        reinitialize rather than a partial repair.
        """
        if self._browser is None or not self._initialized:
            return
        try:
            pages = list(self._context.pages)
            if not pages:
                await self._open_page()
            elif self._page is None or self._page not in pages:
                self._attach_page(pages[0])
        except Exception:
            logger.warning("Browser context unusable; reinitializing session.", exc_info=True)
            self._initialized = False
            await self._release()
            await self.initialize()

    async def run_heartbeat(self, interval_seconds: float = 60) -> None:
        """Call `keep_alive()` forever; cancel the task to stop."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.keep_alive()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error keeping browser alive: %s", e)

    async def close(self) -> None:
        if self._browser is not None:
            await self.save_cookies()
        await self._release()

    async def _release(self) -> None:
        browser, pw = self._browser, self._playwright
        self._browser = None
        self._context = None
        self._page = None
        self._playwright = None
        self._initialized = False
        if browser is not None:
            try:
                await browser.close()
            except Exception:
                logger.debug("Browser close failed.", exc_info=True)
        if pw is not None:
            try:
                await pw.stop()
            except Exception:
                logger.debug("Playwright stop failed.", exc_info=True)


def _backup_path(path: Path) -> Path:
    return path.with_name(path.name + ".bak")


def _read_cookie_file(path: Path) -> Optional[list[dict]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        return None
    # Also accept a Playwright storage_state dump ({"cookies": [...], "origins": [...]}).
    if isinstance(data, dict) and isinstance(data.get("cookies"), list):
        data = data["cookies"]
    if not isinstance(data, list):
        return None
    return [c for c in data if isinstance(c, dict) and c.get("name") and "value" in c]


def _quarantine_file(path: Path, *, prefix: str) -> None:
    try:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        path.replace(path.with_name(f"{prefix}.{path.name}.corrupt-{stamp}"))
    except Exception:
        logger.debug("Failed to quarantine file=%s", path, exc_info=True)
