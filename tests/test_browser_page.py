from __future__ import annotations

import base64
import math
from typing import Any

import pytest

from snag.browser import BrowserClient, Page
from snag.cdp import NO_DEADLINE, CdpError, CdpTimeoutError


class DummyConn:
    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.calls: list[tuple[str, dict[str, Any] | None]] = []
        self.timeouts: list[float | None] = []
        self.responses = responses or {}
        self.timeout = 10.0
        self.load_event: dict[str, Any] | None = {}
        self.closed = False

    def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        self.calls.append((method, params))
        self.timeouts.append(timeout)
        value = self.responses.get(method, {})
        if isinstance(value, Exception):
            raise value
        return value(params) if callable(value) else value

    def wait_for_event(self, event_name: str, timeout: float = 10.0) -> dict[str, Any] | None:  # noqa: ARG002
        return self.load_event

    def clear_events(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


def _page(conn: DummyConn, browser_conn: DummyConn | None = None) -> Page:
    browser = BrowserClient(browser_conn or DummyConn(), port=9222)
    page = Page(browser, "t1")
    page._conn = conn
    return page


def test_page_ids_filters_to_pages() -> None:
    conn = DummyConn(
        {
            "Target.getTargets": {
                "targetInfos": [
                    {"targetId": "p1", "type": "page"},
                    {"targetId": "w1", "type": "service_worker"},
                    {"targetId": "p2", "type": "page"},
                ]
            }
        }
    )
    browser = BrowserClient(conn, port=9222)

    assert browser.page_ids() == ["p1", "p2"]
    pages = browser.pages()
    assert [p.target_id for p in pages] == ["p1", "p2"]
    assert browser.page("p1") is pages[0]


def test_info_is_single_round_trip() -> None:
    browser_conn = DummyConn({"Target.getTargetInfo": {"targetInfo": {"url": "https://a.example", "title": "A"}}})
    page = _page(DummyConn(), browser_conn)

    assert page.info() == {"url": "https://a.example", "title": "A"}
    assert browser_conn.calls == [("Target.getTargetInfo", {"targetId": "t1"})]


def test_navigate_waits_for_load() -> None:
    conn = DummyConn({"Page.navigate": {"frameId": "f"}})
    _page(conn).navigate("https://a.example", timeout=5)
    assert conn.calls[0] == ("Page.navigate", {"url": "https://a.example"})


def test_navigate_timeout_and_error_are_distinct() -> None:
    conn = DummyConn({"Page.navigate": {"frameId": "f"}})
    conn.load_event = None
    with pytest.raises(CdpTimeoutError):
        _page(conn).navigate("https://slow.example", timeout=1)

    bad = DummyConn({"Page.navigate": {"errorText": "net::ERR_NAME_NOT_RESOLVED"}})
    with pytest.raises(CdpError) as info:
        _page(bad).navigate("https://nope.invalid", timeout=1)
    assert not isinstance(info.value, CdpTimeoutError)


def test_eval_js_normalizes_undefined_and_null() -> None:
    conn = DummyConn({"Runtime.evaluate": {"result": {"type": "undefined"}}})
    assert _page(conn).eval_js("void 0") is None
    conn.responses["Runtime.evaluate"] = {"result": {"type": "object", "subtype": "null"}}
    assert _page(conn).eval_js("null") is None
    conn.responses["Runtime.evaluate"] = {"result": {"type": "number", "value": 7}}
    assert _page(conn).eval_js("7") == 7
    params = conn.calls[-1][1] or {}
    assert params["returnByValue"] is True


def test_eval_js_exception_raises() -> None:
    conn = DummyConn({"Runtime.evaluate": {"result": {}, "exceptionDetails": {"text": "Uncaught"}}})
    with pytest.raises(CdpError):
        _page(conn).eval_js("throw 1")


def test_status_code_and_html() -> None:
    values = iter([403, "<html><body>x</body></html>"])
    conn = DummyConn({"Runtime.evaluate": lambda _p: {"result": {"type": "x", "value": next(values)}}})
    page = _page(conn)
    assert page.status_code() == 403
    assert page.html() == "<html><body>x</body></html>"


def test_wait_for_selector_times_out() -> None:
    conn = DummyConn({"Runtime.evaluate": {"result": {"type": "boolean", "value": False}}})
    assert _page(conn).wait_for_selector("#never", timeout=0.05, interval=0.01) is False
    conn.responses["Runtime.evaluate"] = {"result": {"type": "boolean", "value": True}}
    assert _page(conn).wait_for_selector("#now") is True


def test_pdf_and_screenshot_decode_base64() -> None:
    conn = DummyConn(
        {
            "Page.printToPDF": {"data": base64.b64encode(b"%PDF-1.4").decode()},
            "Page.getLayoutMetrics": {"cssContentSize": {"width": 800, "height": 2400}},
            "Page.captureScreenshot": {"data": base64.b64encode(b"\x89PNG").decode()},
        }
    )
    page = _page(conn)

    assert page.pdf() == b"%PDF-1.4"
    assert page.screenshot() == b"\x89PNG"
    shot = [p for m, p in conn.calls if m == "Page.captureScreenshot"][0] or {}
    assert shot["captureBeyondViewport"] is True
    assert shot["clip"]["height"] == 2400
    pdf = [p for m, p in conn.calls if m == "Page.printToPDF"][0] or {}
    assert pdf["printBackground"] is True


def test_close_closes_target_and_socket() -> None:
    browser_conn = DummyConn()
    conn = DummyConn()
    browser = BrowserClient(browser_conn, port=9222)
    page = browser.page("t1")
    page._conn = conn

    page.close()

    assert ("Target.closeTarget", {"targetId": "t1"}) in browser_conn.calls
    assert conn.closed


def test_extraction_and_tab_info_are_not_bounded_by_connect_timeout() -> None:
    conn = DummyConn({"Runtime.evaluate": {"result": {"type": "string", "value": "<html></html>"}}})
    browser_conn = DummyConn({"Target.getTargetInfo": {"targetInfo": {"url": "https://a.example"}}})
    page = _page(conn, browser_conn)

    page.html()
    page.wait_for_selector("#main")
    page.info()
    page.browser.page_ids()

    assert conn.timeouts == [NO_DEADLINE, NO_DEADLINE]
    assert browser_conn.timeouts == [NO_DEADLINE, NO_DEADLINE]
    assert math.isinf(NO_DEADLINE)


def test_stabilisation_polls_stay_within_their_window() -> None:
    conn = DummyConn({"Runtime.evaluate": {"result": {"type": "object", "value": ["complete", 10]}}})

    assert _page(conn).wait_stable(timeout=1, interval=0.01) is True
    assert all(t is not None and t <= 1 for t in conn.timeouts)
