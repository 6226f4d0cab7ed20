from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Union
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, model_validator


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _default_config_from_env() -> dict:
    """
    Env-only defaults so a `.env` file is enough for most setups.

    A YAML file passed to `load_config()` is merged on top of these.
    """
    return {
        "portal": {
            "search_url": os.getenv("GST_SEARCH_URL", "https://services.gst.gov.in/services/searchtp"),
        },
        "browser": {
            "headless": _env_bool("GST_HEADLESS", default=True),
            "cookies_path": os.getenv("GST_COOKIES_PATH", "data/browser_cookies.json"),
        },
        "captcha": {
            "timeout_seconds": os.getenv("GST_CAPTCHA_TIMEOUT_SECONDS", "300"),
        },
        "retry": {
            "max_attempts": os.getenv("GST_MAX_ATTEMPTS", "3"),
            "backoff_seconds": os.getenv("GST_BACKOFF_SECONDS", "3"),
            "payload_timeout_ms": os.getenv("GST_PAYLOAD_TIMEOUT_MS", "15000"),
        },
        "cache": {
            "path": os.getenv("GST_CACHE_PATH", "data/gst_cache.json"),
        },
        "diagnostics": {
            "debug_dir": os.getenv("GST_DEBUG_DIR", "data/debug"),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", "data/lookup.log"),
        },
    }


class PortalConfig(BaseModel):
    """
    Where the public search page lives and which XHR endpoints carry the taxpayer data.

    The portal changes without notice; the API patterns are plain substrings matched against response URLs.
    """

    search_url: str = "https://services.gst.gov.in/services/searchtp"
    primary_api_pattern: str = "/api/search/taxpayerDetails"
    secondary_api_pattern: str = "/api/search/goodservice"
    navigation_timeout_ms: int = Field(default=60_000, ge=1)
    # The search input is not usable right after DOMContentLoaded; the portal's JS needs a few seconds.
    settle_delay_ms: int = Field(default=5_000, ge=0)
    input_timeout_ms: int = Field(default=10_000, ge=0)
    challenge_probe_delay_ms: int = Field(default=2_000, ge=0)

    @model_validator(mode="after")
    def _validate_url(self) -> "PortalConfig":
        parsed = urlparse(self.search_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"portal.search_url must be a full URL (got {self.search_url!r})")
        return self


class BrowserConfig(BaseModel):
    # headless=True selects the offscreen/handoff CAPTCHA strategy, False the interactive one.
    headless: bool = True
    slow_mo_ms: int = Field(default=100, ge=0)
    viewport_width: int = Field(default=1280, ge=320)
    viewport_height: int = Field(default=720, ge=240)
    cookies_path: str = "data/browser_cookies.json"
    heartbeat_seconds: float = Field(default=60, gt=0)


class CaptchaConfig(BaseModel):
    poll_interval_seconds: float = Field(default=2, gt=0)
    timeout_seconds: float = Field(default=300, ge=0)


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=3, ge=0)
    payload_timeout_ms: int = Field(default=15_000, ge=0)
    payload_poll_ms: int = Field(default=500, gt=0)
    secondary_grace_ms: int = Field(default=1_500, ge=0)


class CacheConfig(BaseModel):
    path: str = "data/gst_cache.json"


class DiagnosticsConfig(BaseModel):
    debug_dir: str = "data/debug"
    markup_dump_path: str = ""

    @model_validator(mode="after")
    def _default_dump_path(self) -> "DiagnosticsConfig":
        if not self.markup_dump_path:
            self.markup_dump_path = str(Path(self.debug_dir) / "debug-page.html")
        return self


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = "data/lookup.log"


class AppConfig(BaseModel):
    portal: PortalConfig = PortalConfig()
    browser: BrowserConfig = BrowserConfig()
    captcha: CaptchaConfig = CaptchaConfig()
    retry: RetryConfig = RetryConfig()
    cache: CacheConfig = CacheConfig()
    diagnostics: DiagnosticsConfig = DiagnosticsConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Union[str, Path, None] = None) -> AppConfig:
    raw: dict = {}
    if path:
        p = Path(path)
        if p.exists():
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)
