from __future__ import annotations

import argparse
import asyncio
import base64
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .cache import CacheStore
from .config import AppConfig, load_config
from .logging_config import configure_logging
from .models import ChallengeResponse, LookupFailure
from .portal.client import GstPortalClient
from .service import VerificationService, VerifyOutcome
from .util.diagnostics import create_debug_bundle


logger = logging.getLogger("gst_portal_lookup")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="gst_portal_lookup")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    verify = sub.add_parser("verify", help="Look up one GSTIN (cache first, then the GST search portal)")
    verify.add_argument("gstin", help="15-character GSTIN, e.g. 27ABCDE1234F1Z5")
    verify.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    verify.add_argument(
        "--headful",
        action="store_true",
        help="Show the browser window and solve the CAPTCHA there instead of typing it in the terminal.",
    )

    session = sub.add_parser(
        "session",
        help="Keep one browser session open and verify GSTINs read from stdin (one per line; 'quit' to exit).",
    )
    session.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    session.add_argument("--headful", action="store_true", help="Show the browser window (interactive CAPTCHA).")

    bundle = sub.add_parser("debug-bundle", help="Zip data/debug captures + the log file for sharing")
    bundle.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    bundle.add_argument("--out-dir", default="data", help="Where to write the zip (default: data)")
    return p


def _build_service(cfg: AppConfig) -> VerificationService:
    return VerificationService(GstPortalClient.from_config(cfg), CacheStore(cfg.cache.path))


def _save_challenge_image(image: str, *, debug_dir: str, gstin: str) -> Path:
    _, _, encoded = image.partition(",")
    out = Path(debug_dir) / f"captcha_{gstin}.png"
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(base64.b64decode(encoded or image))
    return out


async def _prompt(text: str) -> str:
    return (await asyncio.to_thread(input, text)).strip()


async def _answer_challenges(service: VerificationService, outcome: VerifyOutcome, cfg: AppConfig) -> VerifyOutcome:
    while isinstance(outcome, ChallengeResponse):
        img = _save_challenge_image(outcome.image, debug_dir=cfg.diagnostics.debug_dir, gstin=outcome.identifier)
        print(f"CAPTCHA saved to {img}")
        solution = await _prompt("Enter the characters shown: ")
        outcome = await service.resume(solution)
    return outcome


def _print_outcome(outcome: VerifyOutcome) -> None:
    print(outcome.model_dump_json(indent=2))


async def _verify_once(cfg: AppConfig, gstin: str) -> VerifyOutcome:
    service = _build_service(cfg)
    try:
        outcome = await service.verify(gstin)
        return await _answer_challenges(service, outcome, cfg)
    finally:
        await service.client.close()


async def _run_session(cfg: AppConfig) -> int:
    service = _build_service(cfg)
    heartbeat = asyncio.create_task(service.client.session.run_heartbeat(cfg.browser.heartbeat_seconds))
    failures = 0
    try:
        while True:
            try:
                line = await _prompt("GSTIN> ")
            except EOFError:
                break
            if not line:
                continue
            if line.lower() in {"quit", "exit"}:
                break
            outcome = await _answer_challenges(service, await service.verify(line), cfg)
            _print_outcome(outcome)
            if isinstance(outcome, LookupFailure):
                failures += 1
    finally:
        heartbeat.cancel()
        try:
            await heartbeat
        except asyncio.CancelledError:
            pass
        await service.client.close()
    return 1 if failures else 0


def _write_failure_bundle(cfg: AppConfig) -> None:
    try:
        bundle = create_debug_bundle(
            debug_dir=cfg.diagnostics.debug_dir,
            log_file=cfg.logging.file_path,
            out_dir="data",
        )
        logger.error("Wrote debug bundle: %s", bundle)
    except Exception:
        logger.debug("Failed to create debug bundle.", exc_info=True)


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    cfg = load_config(args.config)
    configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path)

    if args.cmd == "debug-bundle":
        out = create_debug_bundle(
            debug_dir=cfg.diagnostics.debug_dir,
            log_file=cfg.logging.file_path,
            out_dir=args.out_dir,
        )
        print(f"Debug bundle written: {out}")
        return 0

    if getattr(args, "headful", False):
        cfg.browser.headless = False

    if args.cmd == "verify":
        logger.info("Starting verify (gstin=%s headless=%s)", args.gstin, cfg.browser.headless)
        try:
            outcome = asyncio.run(_verify_once(cfg, args.gstin))
        except KeyboardInterrupt:
            print("Interrupted.")
            return 130
        except Exception:
            logger.exception("Verify crashed")
            _write_failure_bundle(cfg)
            raise
        _print_outcome(outcome)
        if isinstance(outcome, LookupFailure):
            if outcome.error != "InvalidIdentifier":
                _write_failure_bundle(cfg)
            return 1
        return 0

    if args.cmd == "session":
        logger.info("Starting interactive session (headless=%s)", cfg.browser.headless)
        try:
            rc = asyncio.run(_run_session(cfg))
        except KeyboardInterrupt:
            print("Interrupted.")
            return 130
        if rc:
            _write_failure_bundle(cfg)
        return rc

    raise AssertionError("Unhandled command")


if __name__ == "__main__":
    sys.exit(main())
