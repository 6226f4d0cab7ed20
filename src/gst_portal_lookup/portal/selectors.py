from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PortalSelectors:
    """
    The GST search portal is not versioned and its markup drifts.
    Keep every selector/text hook here; candidates are tried in order, first visible match wins.
    """

    # Search form
    identifier_inputs: tuple[str, ...] = ("#for_gstin", 'input[name="for_gstin"]', "#gstin")
    submit_buttons: tuple[str, ...] = ("#lotsearch", 'button[type="submit"]', 'button:has-text("Search")')

    # CAPTCHA
    captcha_images: tuple[str, ...] = ("#imgCaptcha", "img.captcha", 'img[src*="captcha"]')
    captcha_answer_inputs: tuple[str, ...] = ("#fo-captcha", 'input[name="cap"]', "#captcha")
    # Indicators polled while a human solves the challenge in the visible window.
    captcha_indicators: tuple[str, ...] = (
        "#imgCaptcha",
        "img.captcha",
        'img[src*="captcha"]',
        "#fo-captcha",
        'iframe[src*="captcha"]',
        'iframe[title*="challenge" i]',
    )
    captcha_text_hints: tuple[str, ...] = (
        "enter characters as displayed",
        "type the characters",
        "captcha",
        "verify you are human",
    )

    # Explicit portal error banner (e.g. "Invalid GSTIN", "Enter valid Letters shown").
    error_banners: str = ".error-msg, .alert-danger"

    # Extraction content regions (CSS selector lists, first match wins; falls back to <body>).
    table_region: str = ".content-pane, .mypage, .tabpane"
    label_region: str = "main, .content, .main-content, #content, .result, .search-result"
