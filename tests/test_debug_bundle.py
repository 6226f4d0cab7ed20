from __future__ import annotations

import zipfile
from pathlib import Path

from gst_portal_lookup.util.diagnostics import create_debug_bundle, dump_markup


def test_create_debug_bundle_includes_debug_and_log(tmp_path: Path) -> None:
    debug_dir = tmp_path / "debug"
    debug_dir.mkdir()
    (debug_dir / "retries_exhausted_20240101_000000.png").write_bytes(b"png")
    (debug_dir / "debug-page.html").write_text("<html/>", encoding="utf-8")
    (debug_dir / "old_bundle.zip").write_bytes(b"zip")

    log_file = tmp_path / "lookup.log"
    log_file.write_text("hello", encoding="utf-8")

    out = create_debug_bundle(
        debug_dir=str(debug_dir),
        log_file=str(log_file),
        out_dir=str(tmp_path),
    )
    assert out.exists()
    assert out.suffix == ".zip"
    assert out.name.startswith("gst_debug_bundle_")

    with zipfile.ZipFile(out, "r") as z:
        names = set(z.namelist())
        assert "lookup.log" in names
        assert "debug/retries_exhausted_20240101_000000.png" in names
        assert "debug/debug-page.html" in names
        assert "debug/old_bundle.zip" not in names


def test_create_debug_bundle_tolerates_missing_inputs(tmp_path: Path) -> None:
    out = create_debug_bundle(
        debug_dir=str(tmp_path / "missing"),
        log_file=str(tmp_path / "missing.log"),
        out_dir=str(tmp_path / "out"),
    )
    with zipfile.ZipFile(out, "r") as z:
        assert z.namelist() == []


def test_dump_markup_creates_parent_dirs(tmp_path: Path) -> None:
    out = dump_markup("<html>x</html>", str(tmp_path / "a" / "b" / "debug-page.html"))
    assert out is not None
    assert out.read_text(encoding="utf-8") == "<html>x</html>"
