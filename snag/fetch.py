from __future__ import annotations

import logging

from .browser import Page
from .cdp import CdpError, CdpTimeoutError
from .config import STABILIZE_TIMEOUT
from .errors import AuthRequired, BrowserConnection, NavigationFailed, PageLoadTimeout

_LOGGER = logging.getLogger("snag.fetch")

_USER_FIELD = "input[type='text'], input[type='email'], input[name*='user'], input[name*='login']"
_SUBMIT = "button[type='submit'], input[type='submit']"
_LOGIN_HINTS_TITLE = ("login", "sign in")
_LOGIN_HINTS_URL = ("/login", "/signin", "/auth")


class PageFetcher:
    """Navigate a page and pull its rendered HTML.

    Only navigation is bounded by ``timeout``; stabilisation, selector waits and
    extraction run after the expensive part already succeeded.
    """

    def __init__(self, page: Page, timeout: float) -> None:
        self.page = page
        self.timeout = float(timeout)

    def fetch(self, url: str, wait_for: str | None = None) -> str:
        _LOGGER.info("Fetching %s...", url)
        _LOGGER.debug("Navigating to %s (timeout: %ss)...", url, f"{self.timeout:g}")
        try:
            self.page.navigate(url, self.timeout)
        except CdpTimeoutError as exc:
            raise PageLoadTimeout(
                f"Page load timeout exceeded ({self.timeout:g}s)",
                f"snag {url} --timeout {max(60, int(self.timeout) * 2)}",
                {"url": url},
            ) from exc
        except CdpError as exc:
            raise NavigationFailed(f"Navigation failed: {exc}", "Check the URL and your network connection", {"url": url}) from exc

        _LOGGER.debug("Waiting for page to stabilize...")
        try:
            if not self.page.wait_stable(STABILIZE_TIMEOUT):
                _LOGGER.warning("Page did not stabilize within %ss", f"{STABILIZE_TIMEOUT:g}")
        except CdpError as exc:
            _LOGGER.warning("Page did not stabilize: %s", exc)

        if wait_for:
            _LOGGER.debug("Waiting for selector: %s", wait_for)
            self.page.wait_for_selector(wait_for)
            _LOGGER.debug("Selector found: %s", wait_for)

        detect_auth(self.page, url)

        _LOGGER.debug("Extracting HTML content...")
        try:
            html = self.page.html()
        except CdpError as exc:
            raise BrowserConnection(
                f"Failed to extract HTML from {url}: {exc}",
                "Check that the browser is still running, then retry",
                {"url": url},
            ) from exc
        _LOGGER.debug("Extracted %d bytes of HTML", len(html))
        _LOGGER.info("Fetched successfully")
        return html


def detect_auth(page: Page, url: str = "") -> None:
    """Raise AuthRequired on HTTP 401/403; only warn on a login-looking form."""
    try:
        status = page.status_code()
    except CdpError as exc:
        _LOGGER.debug("Status probe failed: %s", exc)
        status = 0
    if status:
        _LOGGER.debug("HTTP status code: %d", status)
    if status in (401, 403):
        raise AuthRequired(
            f"Authentication required (HTTP {status})",
            f"snag --force-visible {url}, or log in with snag --open-browser and fetch via --tab",
            {"status": status, "url": url},
        )

    try:
        if not page.has("input[type='password']"):
            return
        if not (page.has(_USER_FIELD) and page.has(_SUBMIT)):
            return
        info = page.info()
    except CdpError as exc:
        _LOGGER.debug("Login form probe failed: %s", exc)
        return

    title = str(info.get("title") or "").lower()
    current = str(info.get("url") or "").lower()
    _LOGGER.debug("Detected login form on page")
    if any(hint in title for hint in _LOGIN_HINTS_TITLE) or any(hint in current for hint in _LOGIN_HINTS_URL):
        _LOGGER.warning("This appears to be a login page; authentication may be required (try: snag --force-visible %s)", url or current)


def wait_for_selector(page: Page, selector: str, timeout: float) -> None:
    """Bounded selector wait used for already-open tabs."""
    _LOGGER.debug("Waiting for selector: %s", selector)
    if not page.wait_for_selector(selector, timeout):
        raise PageLoadTimeout(
            f"Selector '{selector}' not visible within {timeout:g}s",
            "Check the selector or raise --timeout",
            {"selector": selector},
        )
    _LOGGER.debug("Selector found: %s", selector)


__all__ = ["PageFetcher", "detect_auth", "wait_for_selector"]
