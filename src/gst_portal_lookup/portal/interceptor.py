from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from ..errors import PayloadTimeout, PortalError
from ..models import InterceptedPayload, PayloadKind


logger = logging.getLogger(__name__)


BannerProbe = Callable[[Any], Awaitable[Optional[str]]]


class AttemptCapture:
    """
    Network capture for exactly one attempt.

    The response observer is the only producer: it resolves one future per payload kind (first match wins).
    `await_primary` is the only consumer. After `teardown()` the observer is detached and the futures are
    cancelled, so a late response can never be attributed to the next attempt.
    """

    def __init__(self, page: Any, *, primary_pattern: str, secondary_pattern: str) -> None:
        self.page = page
        self._patterns = {
            PayloadKind.PRIMARY: primary_pattern,
            PayloadKind.SECONDARY: secondary_pattern,
        }
        loop = asyncio.get_running_loop()
        self._futures: dict[PayloadKind, asyncio.Future] = {kind: loop.create_future() for kind in PayloadKind}
        self._closed = False
        page.on("response", self._on_response)

    @property
    def closed(self) -> bool:
        return self._closed

    def _match(self, url: str) -> Optional[PayloadKind]:
        for kind, pattern in self._patterns.items():
            if pattern and pattern in url:
                return kind
        return None

    async def _on_response(self, response: Any) -> None:
        if self._closed:
            return
        url = response.url
        kind = self._match(url)
        if kind is None:
            return
        try:
            body = await response.json()
        except Exception as e:
            logger.warning("Could not parse %s API response: %s", kind.value, e)
            return
        fut = self._futures[kind]
        if self._closed or fut.done():
            return
        fut.set_result(InterceptedPayload(kind=kind, url=url, body=body))
        logger.info("Intercepted %s API response", kind.value)

    def payload(self, kind: PayloadKind) -> Optional[InterceptedPayload]:
        fut = self._futures[kind]
        if fut.done() and not fut.cancelled():
            return fut.result()
        return None

    async def await_primary(
        self,
        timeout_ms: int,
        *,
        poll_ms: int = 500,
        banner_probe: Optional[BannerProbe] = None,
    ) -> InterceptedPayload:
        """
        Wait for the primary payload. Between short waits, `banner_probe(page)` is consulted so an explicit
        portal error fails fast instead of burning the whole timeout.
        """
        if self._closed:
            raise PayloadTimeout("Capture already torn down; no payload can arrive.")

        logger.info("Waiting for API responses...")
        fut = self._futures[PayloadKind.PRIMARY]
        deadline = time.monotonic() + (timeout_ms / 1000)
        while True:
            remaining = deadline - time.monotonic()
            if fut.done():
                break
            if remaining <= 0:
                raise PayloadTimeout(
                    "Timeout waiting for GST details. CAPTCHA might be incorrect or service unavailable."
                )
            await asyncio.wait({fut}, timeout=min(poll_ms / 1000, remaining))
            if fut.done():
                break
            if banner_probe is not None:
                message = await banner_probe(self.page)
                if message:
                    raise PortalError(f"GST Portal Error: {message}")

        if fut.cancelled():
            raise PayloadTimeout("Capture was torn down while waiting for GST details.")
        return fut.result()

    async def await_secondary(self, grace_ms: int) -> Optional[InterceptedPayload]:
        """Best-effort: give the goods/services call a short window to land after the primary one."""
        fut = self._futures[PayloadKind.SECONDARY]
        if not fut.done() and grace_ms > 0 and not self._closed:
            await asyncio.wait({fut}, timeout=grace_ms / 1000)
        return self.payload(PayloadKind.SECONDARY)

    def teardown(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.page.remove_listener("response", self._on_response)
        except Exception:
            logger.debug("Failed to detach response listener.", exc_info=True)
        for fut in self._futures.values():
            if not fut.done():
                fut.cancel()


class ResponseInterceptor:
    """Hands out one `AttemptCapture` per attempt and guarantees the previous one is gone first."""

    def __init__(self, *, primary_pattern: str, secondary_pattern: str) -> None:
        self.primary_pattern = primary_pattern
        self.secondary_pattern = secondary_pattern
        self._active: Optional[AttemptCapture] = None

    @property
    def active(self) -> Optional[AttemptCapture]:
        return self._active

    def register_for_attempt(self, page: Any) -> AttemptCapture:
        self.teardown()
        self._active = AttemptCapture(
            page,
            primary_pattern=self.primary_pattern,
            secondary_pattern=self.secondary_pattern,
        )
        return self._active

    def teardown(self) -> None:
        if self._active is not None:
            self._active.teardown()
            self._active = None
