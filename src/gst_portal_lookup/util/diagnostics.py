from __future__ import annotations

import logging
import re
import time
import zipfile
from pathlib import Path
from typing import Any, Iterable, Optional


logger = logging.getLogger(__name__)


def _safe_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]+", "_", name or "").strip("_")[:60] or "page"


async def save_page_artifacts(
    page: Any,
    *,
    debug_dir: str,
    name_prefix: str,
    timestamped: bool = True,
) -> list[Path]:
    """
    Best-effort screenshot + markup (+ body text) capture for a live page.

    Returns the paths actually written. Never raises: diagnostics must not mask the failure being diagnosed.
    """
    written: list[Path] = []
    out_dir = Path(debug_dir)
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
    except Exception:
        logger.debug("Failed to create debug dir=%s", out_dir, exc_info=True)
        return written

    prefix = _safe_name(name_prefix)
    if timestamped:
        prefix = f"{prefix}_{time.strftime('%Y%m%d_%H%M%S')}"

    png = out_dir / f"{prefix}.png"
    try:
        await page.screenshot(path=str(png), full_page=True)
        written.append(png)
    except Exception:
        logger.debug("Failed to save screenshot (prefix=%s).", prefix, exc_info=True)

    html = out_dir / f"{prefix}.html"
    try:
        html.write_text(await page.content(), encoding="utf-8")
        written.append(html)
    except Exception:
        logger.debug("Failed to save page markup (prefix=%s).", prefix, exc_info=True)

    # Rendered text lets the extraction tiers be replayed offline (scripts/parse_page_snapshot.py).
    try:
        (out_dir / f"{prefix}.txt").write_text(await page.inner_text("body"), encoding="utf-8")
    except Exception:
        pass

    if written:
        logger.info("Saved diagnostics: %s", ", ".join(str(p) for p in written))
    return written


def dump_markup(html: str, path: str) -> Optional[Path]:
    """Write page markup to a fixed location; returns None if the write failed."""
    out = Path(path)
    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(html or "", encoding="utf-8")
    except Exception:
        logger.warning("Could not write page markup to %s", out, exc_info=True)
        return None
    return out


def create_debug_bundle(
    *,
    debug_dir: str,
    log_file: str,
    out_dir: str = "data",
    extra_paths: Optional[Iterable[str]] = None,
) -> Path:
    """
    Zip the diagnostic captures and the log for sharing.

    Cookie and cache files are deliberately left out; they hold session state for the portal.
    """
    out_root = Path(out_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    stamp = time.strftime("%Y%m%d_%H%M%S")
    out_path = out_root / f"gst_debug_bundle_{stamp}.zip"

    dbg = Path(debug_dir)
    log = Path(log_file) if log_file else None

    def _add_file(z: zipfile.ZipFile, file_path: Path, arcname: str) -> None:
        try:
            if file_path.exists() and file_path.is_file():
                z.write(file_path, arcname=arcname)
        except Exception:
            return

    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        if log is not None:
            _add_file(z, log, arcname=log.name)

        if dbg.exists() and dbg.is_dir():
            for p in sorted(dbg.rglob("*")):
                if not p.is_file() or p.suffix == ".zip":
                    continue
                _add_file(z, p, arcname=str(Path("debug") / p.relative_to(dbg)))

        for raw in extra_paths or ():
            p = Path(raw)
            if p.is_file():
                _add_file(z, p, arcname=str(Path("extra") / p.name))

    return out_path
