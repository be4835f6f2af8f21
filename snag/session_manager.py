"""Browser session acquisition.

A request names an ordered plan of terminal modes. Only ``reuse`` may fall
through to the next mode; every launch failure is terminal.

    auto            reuse -> headless
    force-headless  headless
    force-visible   visible
    open            reuse -> open
    reuse-only      reuse
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass

from .browser import BrowserClient
from .config import SnagConfig
from .errors import BrowserConnection
from .launcher import BrowserLauncher, LaunchPlan

_LOGGER = logging.getLogger("snag.session")

MODE_REUSE = "reuse"
MODE_HEADLESS = "headless"
MODE_VISIBLE = "visible"
MODE_OPEN = "open"

REQUEST_AUTO = "auto"
REQUEST_FORCE_HEADLESS = "force-headless"
REQUEST_FORCE_VISIBLE = "force-visible"
REQUEST_OPEN = "open"
REQUEST_REUSE_ONLY = "reuse-only"

PLANS: dict[str, tuple[str, ...]] = {
    REQUEST_AUTO: (MODE_REUSE, MODE_HEADLESS),
    REQUEST_FORCE_HEADLESS: (MODE_HEADLESS,),
    REQUEST_FORCE_VISIBLE: (MODE_VISIBLE,),
    REQUEST_OPEN: (MODE_REUSE, MODE_OPEN),
    REQUEST_REUSE_ONLY: (MODE_REUSE,),
}


@dataclass
class Session:
    port: int
    owned_by_us: bool
    mode: str
    user_data_dir: str | None = None
    user_agent: str | None = None
    browser: BrowserClient | None = None
    launcher: BrowserLauncher | None = None


class SessionAcquirer:
    def __init__(
        self,
        config: SnagConfig,
        *,
        connect: Callable[[int, float], BrowserClient] = BrowserClient.connect,
        launcher_factory: Callable[..., BrowserLauncher] = BrowserLauncher,
    ) -> None:
        self.config = config
        self._connect = connect
        self._launcher_factory = launcher_factory

    def acquire(
        self,
        request: str = REQUEST_AUTO,
        *,
        port: int | None = None,
        user_agent: str | None = None,
        user_data_dir: str | None = None,
    ) -> Session:
        plan = PLANS.get(request)
        if plan is None:
            raise ValueError(f"unknown session request: {request!r}")
        port = int(port if port is not None else self.config.port)

        for position, mode in enumerate(plan):
            is_last = position == len(plan) - 1
            if mode == MODE_REUSE:
                try:
                    return self._reuse(port, user_agent, user_data_dir)
                except BrowserConnection as exc:
                    if is_last:
                        raise
                    _LOGGER.debug("No existing browser instance found: %s", exc.reason)
                    continue
            return self._launch(mode, port, user_agent, user_data_dir)
        raise AssertionError("empty plan")

    def _reuse(self, port: int, user_agent: str | None, user_data_dir: str | None) -> Session:
        _LOGGER.debug("Checking for existing browser instance on port %d...", port)
        browser = self._connect(port, self.config.connect_timeout)
        _LOGGER.info("Connected to existing browser instance")
        if user_data_dir:
            _LOGGER.warning("--user-data-dir ignored (browser already running with its own profile)")
        if user_agent:
            _LOGGER.warning("--user-agent ignored (browser already running with its own user agent)")
        return Session(port=port, owned_by_us=False, mode=MODE_REUSE, browser=browser)

    def _launch(self, mode: str, port: int, user_agent: str | None, user_data_dir: str | None) -> Session:
        self.config.require_binary()
        name = self.config.browser_name
        plan = LaunchPlan(
            headless=mode == MODE_HEADLESS,
            detach=mode == MODE_OPEN,
            user_agent=user_agent,
            user_data_dir=user_data_dir,
        )
        launcher = self._launcher_factory(self.config, plan, port)
        if mode == MODE_HEADLESS:
            _LOGGER.debug("Launching %s in headless mode...", name)
        else:
            _LOGGER.info("Launching %s in visible mode...", name)

        launcher.launch()
        try:
            launcher.wait_ready(self.config.connect_timeout)
            if mode == MODE_OPEN:
                # Detached: no long-lived handle, no cleanup registration.
                _LOGGER.info("Browser opened on port %d", port)
                return Session(
                    port=port,
                    owned_by_us=False,
                    mode=mode,
                    user_data_dir=launcher.user_data_dir,
                    user_agent=user_agent,
                )
            browser = self._connect(port, self.config.connect_timeout)
        except BrowserConnection:
            launcher.stop()
            raise

        _LOGGER.info("%s launched in %s mode", name, mode)
        return Session(
            port=port,
            owned_by_us=True,
            mode=mode,
            user_data_dir=launcher.user_data_dir,
            user_agent=user_agent,
            browser=browser,
            launcher=launcher,
        )

    @staticmethod
    def close(session: Session | None) -> None:
        """Release a session; terminates the browser only when we own it."""
        if session is None:
            return
        if session.browser is not None:
            try:
                session.browser.close()
            except Exception as exc:  # noqa: BLE001
                _LOGGER.debug("Closing CDP connection failed: %s", exc)
            session.browser = None
        if session.owned_by_us and session.launcher is not None:
            try:
                session.launcher.stop()
            except Exception as exc:  # noqa: BLE001
                _LOGGER.warning("Failed to stop browser: %s", exc)
            session.launcher = None


class SessionGuard:
    """Holds the active session behind one lock; ``release`` is the only teardown path."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._session: Session | None = None

    def set(self, session: Session | None) -> None:
        with self._lock:
            self._session = session

    def get(self) -> Session | None:
        with self._lock:
            return self._session

    def release(self) -> bool:
        with self._lock:
            session, self._session = self._session, None
        if session is None:
            return False
        SessionAcquirer.close(session)
        return True

    @contextmanager
    def hold(self, session: Session) -> Generator[Session, None, None]:
        self.set(session)
        try:
            yield session
        finally:
            self.release()


active_session = SessionGuard()

__all__ = [
    "PLANS",
    "Session",
    "SessionAcquirer",
    "SessionGuard",
    "active_session",
]
