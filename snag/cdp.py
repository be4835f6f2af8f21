"""Raw Chrome DevTools Protocol transport.

HTTP discovery (``/json/version``) plus a blocking
WebSocket connection that sends commands and waits for their responses,
buffering any events that arrive in between.
"""

from __future__ import annotations

import json
import logging
import socket
import time
from collections import deque
from contextlib import suppress
from typing import Any
from urllib.error import URLError
from urllib.request import urlopen

import websocket

_LOGGER = logging.getLogger("snag.cdp")

CDP_HOST = "127.0.0.1"
# Pass as ``timeout`` for commands that must not be cut short.
NO_DEADLINE = float("inf")
MAX_QUEUED_EVENTS = 500


class CdpError(Exception):
    pass


class CdpTimeoutError(CdpError):
    pass


def http_endpoint(port: int, path: str) -> str:
    return f"http://{CDP_HOST}:{int(port)}{path}"


def get_json(port: int, path: str, timeout: float = 2.0) -> Any:
    url = http_endpoint(port, path)
    try:
        with urlopen(url, timeout=timeout) as resp:
            raw = resp.read()
    except TimeoutError as exc:
        raise CdpTimeoutError(f"{url} timed out") from exc
    except (OSError, URLError) as exc:
        raise CdpError(f"{url}: {exc}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CdpError(f"{url}: malformed JSON") from exc


def resolve_control_url(port: int, timeout: float = 2.0) -> str:
    """Return the browser-level WebSocket URL advertised on ``port``."""
    data = get_json(port, "/json/version", timeout=timeout)
    ws_url = data.get("webSocketDebuggerUrl") if isinstance(data, dict) else None
    if not isinstance(ws_url, str) or not ws_url.startswith("ws"):
        raise CdpError(f"No webSocketDebuggerUrl advertised on port {port}")
    return ws_url


def page_ws_url(port: int, target_id: str) -> str:
    return f"ws://{CDP_HOST}:{int(port)}/devtools/page/{target_id}"


class CdpConnection:
    """One CDP WebSocket. Commands block until their reply; events are queued."""

    def __init__(self, ws_url: str, timeout: float = 10.0):
        try:
            self.ws = websocket.create_connection(ws_url, timeout=timeout, suppress_origin=True)
        except (OSError, websocket.WebSocketException) as exc:
            if isinstance(exc, (TimeoutError, websocket.WebSocketTimeoutException)):
                raise CdpTimeoutError(f"connect to {ws_url} timed out") from exc
            raise CdpError(f"connect to {ws_url}: {exc}") from exc
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1
        # Oldest events fall off once the queue is full.
        self._events: deque[dict[str, Any]] = deque(maxlen=MAX_QUEUED_EVENTS)

    def _queue_event(self, event: dict[str, Any]) -> None:
        self._events.append(event)

    def clear_events(self) -> None:
        self._events.clear()

    def pop_event(self, name: str) -> dict[str, Any] | None:
        """Remove and return the params of the oldest queued ``name`` event."""
        for event in self._events:
            if event.get("method") == name:
                self._events.remove(event)
                return _event_params(event)
        return None

    def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        """Send ``method`` and return its ``result``; CdpError on a protocol error."""
        msg_id = self._next_id
        self._next_id += 1

        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params

        _LOGGER.debug("-> %s %s", method, msg.get("params", {}))
        try:
            self.ws.settimeout(min(2.0, max(0.5, float(self.timeout))))
            self.ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            raise CdpError(f"{method}: {exc}") from exc

        return self._recv_until(msg_id, method, self.timeout if timeout is None else timeout)

    def _recv(self, remaining: float) -> dict[str, Any] | None:
        # Small socket timeouts let the caller enforce its own deadline.
        try:
            self.ws.settimeout(min(0.5, remaining))
            raw = self.ws.recv()
        except Exception as exc:  # noqa: BLE001
            msg = str(exc).lower()
            if isinstance(exc, (TimeoutError, websocket.WebSocketTimeoutException)) or "timed out" in msg:
                return None
            raise CdpError(str(exc)) from exc
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None
        return data if isinstance(data, dict) else None

    def _recv_until(self, expected_id: int, method: str, timeout: float) -> dict[str, Any]:
        deadline = time.time() + timeout
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                raise CdpTimeoutError(f"{method} timed out after {timeout:g}s")

            data = self._recv(remaining)
            if data is None:
                continue

            if isinstance(data.get("method"), str) and "id" not in data:
                self._queue_event(data)
                continue

            if data.get("id") != expected_id:
                continue
            error = data.get("error")
            if error is not None:
                detail = error.get("message") if isinstance(error, dict) else error
                raise CdpError(f"{method}: {detail}")
            _LOGGER.debug("<- %s ok", method)
            return data.get("result") or {}

    def wait_for_event(self, event_name: str, timeout: float = 10.0) -> dict[str, Any] | None:
        """Wait for specific CDP event. Returns None on timeout."""
        pending = self.pop_event(event_name)
        if pending is not None:
            return pending

        deadline = time.time() + timeout
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                return None
            data = self._recv(remaining)
            if data is None:
                continue
            if isinstance(data.get("method"), str) and "id" not in data:
                if data["method"] == event_name:
                    return _event_params(data)
                self._queue_event(data)

    def abort(self) -> None:
        """Best-effort hard break of the underlying socket."""
        sock = getattr(self.ws, "sock", None)
        if sock is not None:
            with suppress(Exception):
                sock.shutdown(socket.SHUT_RDWR)
            with suppress(Exception):
                sock.close()

    def close(self) -> None:
        with suppress(Exception):
            self.ws.close(timeout=1)
        self.abort()


def _event_params(event: dict[str, Any]) -> dict[str, Any]:
    params = event.get("params")
    return params if isinstance(params, dict) else {}


__all__ = [
    "CdpConnection",
    "CdpError",
    "CdpTimeoutError",
    "NO_DEADLINE",
    "get_json",
    "page_ws_url",
    "resolve_control_url",
]
