from __future__ import annotations

import time
from typing import Any, Iterable, Optional


async def first_visible(scope: Any, selectors: Iterable[str], *, limit: int = 25) -> Optional[Any]:
    """
    Return the first visible match across an ordered list of candidate selectors, or None.

    `scope` can be a Page or Frame. Probe errors (detached nodes, bad selectors) count as "no match".
    """
    for selector in selectors:
        try:
            loc = scope.locator(selector)
            n = min(int(await loc.count()), limit)
        except Exception:
            continue
        for i in range(n):
            cand = loc.nth(i)
            try:
                if await cand.is_visible():
                    return cand
            except Exception:
                continue
    return None


async def wait_for_first_visible(
    page: Any,
    selectors: Iterable[str],
    *,
    timeout_ms: int,
    poll_ms: int = 250,
) -> Optional[Any]:
    """Poll `first_visible` until something shows up or `timeout_ms` elapses."""
    candidates = tuple(selectors)
    deadline = time.monotonic() + (timeout_ms / 1000)
    while True:
        found = await first_visible(page, candidates)
        if found is not None:
            return found
        if time.monotonic() >= deadline:
            return None
        await page.wait_for_timeout(poll_ms)
