from __future__ import annotations

import asyncio
import json
from pathlib import Path

from gst_portal_lookup.portal.session import SessionManager, platform_user_agent

from fakes import FakePlaywright


COOKIES = [
    {"name": "sid", "value": "abc", "domain": ".gst.gov.in", "path": "/"},
    {"name": "", "value": "dropped"},
    "not-a-cookie",
]


def _session(tmp_path: Path, pw: FakePlaywright) -> SessionManager:
    return SessionManager(cookies_path=str(tmp_path / "browser_cookies.json"), playwright_factory=pw)


def test_platform_user_agent() -> None:
    assert "Windows NT" in platform_user_agent("win32")
    assert "X11; Linux" in platform_user_agent("linux2")
    assert "Macintosh" in platform_user_agent("darwin")


def test_initialize_loads_cookies_and_is_idempotent(tmp_path: Path) -> None:
    (tmp_path / "browser_cookies.json").write_text(json.dumps(COOKIES), encoding="utf-8")
    pw = FakePlaywright()
    sm = _session(tmp_path, pw)

    async def run():
        await sm.initialize()
        await sm.initialize()
        return sm.page

    page = asyncio.run(run())
    assert pw.starts == 1
    assert sm.initialized
    assert page is not None
    ctx = pw.browsers[0].contexts[0]
    assert ctx.added_cookies == [COOKIES[0]]
    assert "--disable-blink-features=AutomationControlled" in pw.browsers[0].launch_kwargs["args"]


def test_accepts_storage_state_shape(tmp_path: Path) -> None:
    state = {"cookies": [COOKIES[0]], "origins": []}
    (tmp_path / "browser_cookies.json").write_text(json.dumps(state), encoding="utf-8")
    pw = FakePlaywright()
    asyncio.run(_session(tmp_path, pw).initialize())
    assert pw.browsers[0].contexts[0].added_cookies == [COOKIES[0]]


def test_corrupt_cookie_file_restored_from_backup(tmp_path: Path) -> None:
    path = tmp_path / "browser_cookies.json"
    path.write_text("{oops", encoding="utf-8")
    (tmp_path / "browser_cookies.json.bak").write_text(json.dumps([COOKIES[0]]), encoding="utf-8")
    pw = FakePlaywright()

    asyncio.run(_session(tmp_path, pw).initialize())

    assert pw.browsers[0].contexts[0].added_cookies == [COOKIES[0]]
    assert list(tmp_path.glob("cookies.browser_cookies.json.corrupt-*"))
    assert json.loads(path.read_text(encoding="utf-8")) == [COOKIES[0]]


def test_corrupt_cookie_file_without_backup_starts_fresh(tmp_path: Path) -> None:
    (tmp_path / "browser_cookies.json").write_text("not json", encoding="utf-8")
    pw = FakePlaywright()
    sm = _session(tmp_path, pw)

    asyncio.run(sm.initialize())

    assert sm.initialized
    assert pw.browsers[0].contexts[0].added_cookies == []


def test_save_cookies_writes_file_and_backup(tmp_path: Path) -> None:
    pw = FakePlaywright()
    sm = _session(tmp_path, pw)

    async def run():
        await sm.initialize()
        return await sm.save_cookies()

    out = asyncio.run(run())
    assert out == tmp_path / "browser_cookies.json"
    saved = json.loads(out.read_text(encoding="utf-8"))
    assert saved[0]["name"] == "sid"
    assert (tmp_path / "browser_cookies.json.bak").exists()


def test_closed_page_is_recreated_on_next_use(tmp_path: Path) -> None:
    pw = FakePlaywright()
    sm = _session(tmp_path, pw)

    async def run():
        first = await sm.ensure_page()
        first.close_now()
        assert not sm.initialized
        assert sm.page is None
        second = await sm.ensure_page()
        return first, second

    first, second = asyncio.run(run())
    assert second is not first
    assert pw.starts == 1
    assert len(pw.browsers[0].contexts[0].pages) == 2


def test_keep_alive_opens_page_when_none_left(tmp_path: Path) -> None:
    pw = FakePlaywright()
    sm = _session(tmp_path, pw)

    async def run():
        await sm.initialize()
        ctx = pw.browsers[0].contexts[0]
        ctx.pages.clear()
        await sm.keep_alive()
        return ctx

    ctx = asyncio.run(run())
    assert len(ctx.pages) == 1
    assert pw.starts == 1


def test_keep_alive_reinitializes_when_context_is_broken(tmp_path: Path) -> None:
    pw = FakePlaywright()
    sm = _session(tmp_path, pw)

    async def run():
        await sm.initialize()
        pw.browsers[0].contexts[0].pages = None
        await sm.keep_alive()

    asyncio.run(run())
    assert pw.starts == 2
    assert pw.stops == 1
    assert sm.initialized


def test_close_saves_cookies_and_is_repeatable(tmp_path: Path) -> None:
    pw = FakePlaywright()
    sm = _session(tmp_path, pw)

    async def run():
        await sm.initialize()
        await sm.close()
        await sm.close()

    asyncio.run(run())
    assert (tmp_path / "browser_cookies.json").exists()
    assert pw.stops == 1
    assert not sm.initialized
    assert sm.page is None


def test_launch_falls_back_to_system_channel(tmp_path: Path) -> None:
    class MissingChromium(FakePlaywright):
        async def launch(self, **kwargs):
            if "channel" not in kwargs:
                raise RuntimeError("Executable doesn't exist at /ms-playwright/chromium/chrome")
            return await super().launch(**kwargs)

    pw = MissingChromium()
    asyncio.run(_session(tmp_path, pw).initialize())
    assert pw.browsers[0].launch_kwargs["channel"] == "chrome"


def test_heartbeat_runs_keep_alive_until_cancelled(tmp_path: Path) -> None:
    pw = FakePlaywright()
    sm = _session(tmp_path, pw)

    async def run():
        await sm.initialize()
        ctx = pw.browsers[0].contexts[0]
        ctx.pages.clear()
        task = asyncio.ensure_future(sm.run_heartbeat(0.001))
        for _ in range(50):
            await asyncio.sleep(0.005)
            if ctx.pages:
                break
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return ctx, task

    ctx, task = asyncio.run(run())
    assert len(ctx.pages) >= 1
    assert task.cancelled()
