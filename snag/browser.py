"""High-level browser and page handles on top of :mod:`snag.cdp`."""

from __future__ import annotations

import base64
import json
import logging
import time
from contextlib import suppress
from typing import Any

from .cdp import NO_DEADLINE, CdpConnection, CdpError, CdpTimeoutError, page_ws_url, resolve_control_url
from .config import CONNECT_TIMEOUT
from .errors import BrowserConnection

_LOGGER = logging.getLogger("snag.browser")

_STATUS_JS = "window.performance?.getEntriesByType?.('navigation')?.[0]?.responseStatus || 0"


class BrowserClient:
    """Browser-level CDP connection: target discovery and tab lifecycle."""

    def __init__(self, conn: CdpConnection, port: int) -> None:
        self.conn = conn
        self.port = int(port)
        self._pages: dict[str, Page] = {}

    @classmethod
    def connect(cls, port: int, timeout: float = CONNECT_TIMEOUT) -> BrowserClient:
        try:
            ws_url = resolve_control_url(port, timeout=timeout)
            _LOGGER.debug("Resolved WebSocket URL: %s", ws_url)
            conn = CdpConnection(ws_url, timeout=timeout)
        except CdpError as exc:
            raise BrowserConnection(
                f"Cannot connect to browser on port {port}: {exc}",
                "Start one with: snag --open-browser",
                {"port": port},
            ) from exc
        return cls(conn, port)

    def page(self, target_id: str) -> Page:
        page = self._pages.get(target_id)
        if page is None:
            page = Page(self, target_id)
            self._pages[target_id] = page
        return page

    def page_ids(self, timeout: float = NO_DEADLINE) -> list[str]:
        result = self.conn.send("Target.getTargets", timeout=timeout)
        infos = result.get("targetInfos") or []
        return [str(info["targetId"]) for info in infos if info.get("type") == "page" and info.get("targetId")]

    def pages(self) -> list[Page]:
        return [self.page(tid) for tid in self.page_ids()]

    def new_page(self, url: str = "about:blank") -> Page:
        result = self.conn.send("Target.createTarget", {"url": url})
        target_id = result.get("targetId")
        if not target_id:
            raise CdpError("Target.createTarget returned no targetId")
        return self.page(str(target_id))

    def target_info(self, target_id: str) -> dict[str, Any]:
        result = self.conn.send("Target.getTargetInfo", {"targetId": target_id}, timeout=NO_DEADLINE)
        info = result.get("targetInfo")
        return info if isinstance(info, dict) else {}

    def close_target(self, target_id: str) -> None:
        page = self._pages.pop(target_id, None)
        if page is not None:
            page.disconnect()
        self.conn.send("Target.closeTarget", {"targetId": target_id})

    def version(self) -> str:
        result = self.conn.send("Browser.getVersion")
        return str(result.get("product") or "")

    def close(self) -> None:
        """Drop every connection. Never closes the browser itself."""
        for page in list(self._pages.values()):
            page.disconnect()
        self._pages.clear()
        self.conn.close()


class Page:
    """One tab. The page WebSocket is opened lazily on first command."""

    def __init__(self, browser: BrowserClient, target_id: str) -> None:
        self.browser = browser
        self.target_id = target_id
        self._conn: CdpConnection | None = None

    @property
    def conn(self) -> CdpConnection:
        if self._conn is None:
            self._conn = CdpConnection(page_ws_url(self.browser.port, self.target_id), timeout=CONNECT_TIMEOUT)
            self._conn.send("Page.enable")
        return self._conn

    def info(self) -> dict[str, Any]:
        """Target metadata (url, title) in a single round trip."""
        return self.browser.target_info(self.target_id)

    def navigate(self, url: str, timeout: float) -> None:
        """Navigate and wait for the load event; raises CdpTimeoutError past ``timeout``."""
        deadline = time.time() + timeout
        self.conn.clear_events()
        result = self.conn.send("Page.navigate", {"url": url}, timeout=timeout)
        error_text = result.get("errorText")
        if error_text:
            raise CdpError(f"navigation to {url} failed: {error_text}")
        remaining = deadline - time.time()
        if remaining <= 0 or self.conn.wait_for_event("Page.loadEventFired", remaining) is None:
            raise CdpTimeoutError(f"page load did not finish within {timeout:g}s")

    def eval_js(self, expression: str, *, timeout: float = NO_DEADLINE) -> Any:
        """Evaluate in the page. Unbounded unless ``timeout`` is given."""
        result = self.conn.send(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
            timeout=timeout,
        )
        if result.get("exceptionDetails"):
            text = result["exceptionDetails"].get("text") or "exception"
            raise CdpError(f"Runtime.evaluate: {text}")
        value = result.get("result")
        if not isinstance(value, dict):
            return None
        # CDP reports undefined and null as type markers without a value.
        if value.get("type") == "undefined" or value.get("subtype") == "null":
            return None
        return value.get("value")

    def wait_stable(self, timeout: float = 3.0, interval: float = 0.25) -> bool:
        """Wait until the document is loaded and its markup stops changing."""
        deadline = time.time() + timeout
        last: int | None = None
        while time.time() < deadline:
            state = self.eval_js(
                "[document.readyState, document.documentElement ? document.documentElement.outerHTML.length : 0]",
                timeout=max(0.1, deadline - time.time()),
            )
            ready, size = (state or ["", 0])[:2]
            if ready == "complete" and size == last:
                return True
            last = size
            time.sleep(interval)
        return False

    def has(self, selector: str) -> bool:
        return bool(self.eval_js(f"!!document.querySelector({json.dumps(selector)})"))

    def wait_for_selector(self, selector: str, timeout: float | None = None, interval: float = 0.2) -> bool:
        """Poll until ``selector`` matches a visible element.

        ``timeout=None`` waits indefinitely. Returns False when the deadline passes.
        """
        js = (
            "(() => {"
            f" const el = document.querySelector({json.dumps(selector)});"
            " if (!el) return false;"
            " const r = el.getBoundingClientRect();"
            " const s = window.getComputedStyle(el);"
            " return r.width > 0 && r.height > 0 && s.visibility !== 'hidden' && s.display !== 'none';"
            "})()"
        )
        deadline = None if timeout is None else time.time() + timeout
        while True:
            if self.eval_js(js):
                return True
            if deadline is not None and time.time() >= deadline:
                return False
            time.sleep(interval)

    def html(self) -> str:
        return self.eval_js("document.documentElement ? document.documentElement.outerHTML : ''") or ""

    def title(self) -> str:
        return self.eval_js("document.title") or ""

    def url(self) -> str:
        return self.eval_js("window.location.href") or ""

    def status_code(self) -> int:
        with suppress(TypeError, ValueError):
            return int(self.eval_js(_STATUS_JS) or 0)
        return 0

    def pdf(self) -> bytes:
        result = self.conn.send("Page.printToPDF", {"printBackground": True}, timeout=max(self.conn.timeout, 60.0))
        return base64.b64decode(result.get("data", ""))

    def screenshot(self) -> bytes:
        """Full-page PNG."""
        params: dict[str, Any] = {"format": "png", "fromSurface": True, "captureBeyondViewport": True}
        metrics = self.conn.send("Page.getLayoutMetrics")
        size = metrics.get("cssContentSize") or metrics.get("contentSize") or {}
        if size.get("width") and size.get("height"):
            params["clip"] = {"x": 0, "y": 0, "width": size["width"], "height": size["height"], "scale": 1}
        result = self.conn.send("Page.captureScreenshot", params, timeout=max(self.conn.timeout, 60.0))
        return base64.b64decode(result.get("data", ""))

    def close(self) -> None:
        self.browser.close_target(self.target_id)

    def disconnect(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


__all__ = ["BrowserClient", "Page"]
