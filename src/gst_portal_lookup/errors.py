from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional


class PortalLookupError(RuntimeError):
    """
    Base for every failure the retry loop knows how to classify.

    `artifacts` collects screenshot/markup paths written while handling the failure so the caller can point
    a human at them.
    """

    retryable: bool = True
    suggestion: str = (
        "Check that the GSTIN is correct and try again. If the issue persists, the GST portal structure may have "
        "changed; inspect the diagnostic files."
    )

    def __init__(self, message: str, *, artifacts: Optional[Iterable[Path]] = None) -> None:
        super().__init__(message)
        self.artifacts: list[Path] = list(artifacts or [])

    def add_artifacts(self, paths: Iterable[Path]) -> None:
        for p in paths:
            if p not in self.artifacts:
                self.artifacts.append(p)


class NavigationFailure(PortalLookupError):
    suggestion = "The GST portal did not load. Check network access to services.gst.gov.in and retry."


class InputNotFound(PortalLookupError):
    """
    Raised when none of the GSTIN input candidates became visible. A screenshot is saved before raising.
    """

    suggestion = "The GSTIN search field was not found; the portal layout may have changed. See the screenshot."


class PortalError(PortalLookupError):
    """The portal rendered an explicit error banner; the banner text is the message."""

    suggestion = "The GST portal reported an error for this search. Verify the GSTIN and the CAPTCHA answer."


class PayloadTimeout(PortalLookupError):
    suggestion = (
        "Timed out waiting for GST details. The CAPTCHA answer may have been wrong or the portal may be "
        "unavailable; start the lookup again."
    )


class EmptyExtraction(PortalLookupError):
    suggestion = "The result page loaded but no business details could be read. Inspect the saved page markup."


class SessionExpired(PortalLookupError):
    retryable = False
    suggestion = "The browser session expired or was closed. Start the lookup again to get a fresh CAPTCHA."


class InvalidIdentifier(ValueError):
    """GSTIN failed boundary validation (15 alphanumeric characters after normalization)."""
