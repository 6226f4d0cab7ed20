#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


def _ensure_src_on_path() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src = repo_root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


def _read_text(path: str) -> str:
    p = Path(path)
    if not p.exists():
        raise SystemExit(f"File not found: {p}")
    return p.read_text(encoding="utf-8", errors="replace")


def main(argv: list[str] | None = None) -> int:
    _ensure_src_on_path()

    from gst_portal_lookup.portal.extraction import ExtractionEngine, PageSnapshot

    p = argparse.ArgumentParser(
        prog="parse_page_snapshot",
        description=(
            "Run the page-extraction tiers over a saved result page (from data/debug/*.html + *.txt).\n"
            "This is intended for debugging extraction regressions offline (no Playwright, no portal)."
        ),
    )
    p.add_argument("--html", required=True, help="Path to a saved .html capture")
    p.add_argument(
        "--text",
        default="",
        help="Path to the matching .txt capture (default: the .html path with a .txt suffix, if present)",
    )
    p.add_argument("--gstin", default="", help="Optional GSTIN to stamp on the record")
    p.add_argument("--out", default="", help="Optional output JSON path (otherwise prints to stdout)")
    args = p.parse_args(argv)

    html = _read_text(args.html)
    text_path = args.text or str(Path(args.html).with_suffix(".txt"))
    text = _read_text(text_path) if (args.text or Path(text_path).exists()) else ""

    # Dump path is redirected so an empty result does not overwrite the live diagnostic file.
    engine = ExtractionEngine(markup_dump_path=str(Path(args.html).with_suffix(".empty.html")))
    record = engine.extract_from_snapshot(
        PageSnapshot(html=html, text=text),
        identifier=(args.gstin or "").strip().upper() or None,
    )

    out_json = json.dumps({"record": record.model_dump(mode="json")}, indent=2, sort_keys=False)
    if args.out:
        Path(args.out).write_text(out_json, encoding="utf-8")
    else:
        print(out_json)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
