"""One handler per CLI action.

Handlers validate first, then acquire a session through ``active_session`` so
the signal handler can tear it down, then do the work.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import IO

from .batch import run_batch
from .browser import Page
from .cdp import CdpError
from .config import BINARY_FORMATS, SnagConfig
from .convert import ContentConverter
from .errors import BrowserConnection, NoBrowserRunning, NoValidURLs, OutputFlagConflict, SnagError, ValidationError
from .fetch import PageFetcher, wait_for_selector
from .naming import output_path
from .session_manager import (
    REQUEST_AUTO,
    REQUEST_OPEN,
    REQUEST_REUSE_ONLY,
    Session,
    SessionAcquirer,
    active_session,
)
from .tabs import TabDescriptor, TabDirectory, display_tab_list, is_non_fetchable_url, match, parse_range, select_range
from .validate import validate_output_path_escape, validate_url

_LOGGER = logging.getLogger("snag.handlers")


@dataclass
class FetchOptions:
    urls: list[str] = field(default_factory=list)
    fmt: str = "md"
    output: str | None = None
    output_dir: str | None = None
    port: int = 9222
    timeout: float = 30.0
    timeout_set: bool = False
    wait_for: str | None = None
    user_agent: str | None = None
    user_data_dir: str | None = None
    close_tab: bool = False
    request: str = REQUEST_AUTO
    verbose: bool = False


class Handlers:
    def __init__(
        self,
        config: SnagConfig,
        opts: FetchOptions,
        *,
        acquirer: SessionAcquirer | None = None,
        out: IO[str] | None = None,
    ) -> None:
        self.config = config
        self.opts = opts
        self.acquirer = acquirer or SessionAcquirer(config)
        self.out = out if out is not None else sys.stdout

    # -- sessions ---------------------------------------------------------

    def _acquire(self, request: str) -> Session:
        session = self.acquirer.acquire(
            request,
            port=self.opts.port,
            user_agent=self.opts.user_agent,
            user_data_dir=self.opts.user_data_dir,
        )
        active_session.set(session)
        return session

    def _require_running(self) -> Session:
        try:
            session = self.acquirer.acquire(REQUEST_REUSE_ONLY, port=self.opts.port)
        except BrowserConnection as exc:
            raise NoBrowserRunning(
                f"No browser found on port {self.opts.port}",
                "Try running 'snag --open-browser' first",
            ) from exc
        active_session.set(session)
        return session

    @contextmanager
    def _in_session(self) -> Iterator[None]:
        """Release the active session on exit; raw CDP failures become BrowserConnection."""
        try:
            yield
        except CdpError as exc:
            raise BrowserConnection(
                f"Lost connection to the browser on port {self.opts.port}: {exc}",
                "Check that the browser is still running (snag --doctor), then retry",
            ) from exc
        finally:
            active_session.release()

    # -- output -----------------------------------------------------------

    def _converter(self) -> ContentConverter:
        return ContentConverter(self.opts.fmt, stdout=self.out)

    def _target_path(self, title: str, url: str, timestamp: datetime) -> str | None:
        """Explicit file, auto-named file in the output dir, or None for stdout."""
        if self.opts.output:
            return self.opts.output
        directory = self.opts.output_dir
        if directory is None and self.opts.fmt in BINARY_FORMATS:
            directory = "."
        if directory is None:
            return None
        path = output_path(directory, title, url, self.opts.fmt, timestamp)
        validate_output_path_escape(directory, os.path.relpath(path, directory))
        if self.opts.output_dir is None:
            _LOGGER.info("Auto-generated filename: %s", path)
        return path

    def _deliver(self, page: Page, target: str | None, html: str | None = None) -> None:
        converter = self._converter()
        if converter.is_binary:
            converter.process_page(page, target)
            return
        converter.process(page.html() if html is None else html, target)

    # -- actions ----------------------------------------------------------

    def list_tabs(self) -> None:
        session = self._require_running()
        with self._in_session():
            tabs = TabDirectory(session.browser).enumerate()
            display_tab_list(tabs, self.out, verbose=self.opts.verbose)

    def fetch_url(self, url: str) -> None:
        session = self._acquire(self.opts.request)
        with self._in_session():
            browser = session.browser
            page = browser.new_page()
            try:
                html = PageFetcher(page, self.opts.timeout).fetch(url, self.opts.wait_for)
                info = page.info()
                target = self._target_path(str(info.get("title") or ""), url, datetime.now())
                self._deliver(page, target, html)
            finally:
                if self.opts.close_tab and not session.owned_by_us:
                    _LOGGER.debug("Closing tab")
                    _close_quietly(page)

    def fetch_urls(self, urls: list[str]) -> None:
        if self.opts.output:
            raise OutputFlagConflict(
                "Cannot use --output with multiple URLs, use --output-dir",
                "snag <url1> <url2> --output-dir ./out",
            )
        if self.opts.output_dir is None:
            self.opts.output_dir = "."

        valid: list[str] = []
        for raw in urls:
            try:
                valid.append(validate_url(raw))
            except SnagError as exc:
                _LOGGER.warning("Skipping invalid URL '%s': %s", raw, exc.reason)
        if not valid:
            raise NoValidURLs("No valid URLs to process", "snag https://example.com https://example.org")

        _LOGGER.info("Processing %d URL%s...", len(valid), _plural(len(valid)))
        session = self._acquire(self.opts.request)
        with self._in_session():
            browser = session.browser

            def fetch_one(url: str, timestamp: datetime) -> None:
                page = browser.new_page()
                done = False
                try:
                    html = PageFetcher(page, self.opts.timeout).fetch(url, self.opts.wait_for)
                    info = page.info()
                    target = self._target_path(str(info.get("title") or ""), url, timestamp)
                    self._deliver(page, target, html)
                    done = True
                finally:
                    # Failed pages are always closed; good ones only on request or in our own browser.
                    if not done or self.opts.close_tab or session.owned_by_us:
                        _close_quietly(page)

            run_batch(valid, fetch_one).raise_for_failures()

    def fetch_tab(self, pattern: str) -> None:
        pattern = pattern.strip()
        if not pattern:
            raise ValidationError("Tab pattern cannot be empty", "snag --list-tabs, then snag --tab <index>")
        self._warn_ignored_for_tabs("--tab")

        session = self._require_running()
        with self._in_session():
            tabs = TabDirectory(session.browser).enumerate()
            bounds = parse_range(pattern)
            if bounds is not None:
                if self.opts.output:
                    raise OutputFlagConflict(
                        "Cannot use --output with multiple tabs, use --output-dir",
                        f"snag --tab {pattern} --output-dir ./out",
                    )
                self._tab_batch(select_range(tabs, *bounds))
                return

            try:
                tab = match(pattern, tabs)
            except SnagError:
                display_tab_list(tabs, sys.stderr)
                raise
            _LOGGER.info("Fetching content from: %s", tab.url)
            self._process_tab(tab, datetime.now())

    def fetch_all_tabs(self) -> None:
        self._warn_ignored_for_tabs("--all-tabs")
        if self.opts.output_dir is None:
            self.opts.output_dir = "."
        session = self._require_running()
        with self._in_session():
            tabs = TabDirectory(session.browser).enumerate()
            if not tabs:
                _LOGGER.info("No tabs open in browser")
                return
            fetchable = []
            for tab in tabs:
                if is_non_fetchable_url(tab.url.lower()):
                    _LOGGER.warning("Skipping tab [%d]: %s (not fetchable)", tab.index, tab.url)
                    continue
                fetchable.append(tab)
            _LOGGER.info("Processing %d tabs...", len(fetchable))
            self._tab_batch(fetchable)

    def _tab_batch(self, tabs: list[TabDescriptor]) -> None:
        if self.opts.output_dir is None:
            self.opts.output_dir = "."
        run_batch(tabs, self._process_tab, describe=lambda tab: tab.url).raise_for_failures()

    def _process_tab(self, tab: TabDescriptor, timestamp: datetime) -> None:
        page = tab.page
        try:
            if self.opts.wait_for:
                wait_for_selector(page, self.opts.wait_for, self.opts.timeout)
            target = self._target_path(tab.title, tab.url, timestamp)
            self._deliver(page, target)
        finally:
            if self.opts.close_tab:
                _close_quietly(page)

    def _warn_ignored_for_tabs(self, flag: str) -> None:
        if self.opts.user_agent:
            _LOGGER.warning("--user-agent is ignored with %s (cannot change existing tabs' user agents)", flag)
        if self.opts.user_data_dir:
            _LOGGER.warning("--user-data-dir ignored when connecting to existing browser")
        if self.opts.timeout_set and not self.opts.wait_for:
            _LOGGER.warning("--timeout is ignored without --wait-for when using %s", flag)

    def open_browser(self) -> None:
        _LOGGER.info("Opening browser...")
        session = self.acquirer.acquire(
            REQUEST_OPEN,
            port=self.opts.port,
            user_agent=self.opts.user_agent,
            user_data_dir=self.opts.user_data_dir,
        )
        if session.owned_by_us is False and session.browser is not None:
            _LOGGER.info("Browser already running on port %d", session.port)
        _LOGGER.info("You can now connect to it using: snag <url>")
        # Never terminates: reused and detached browsers are both not ours.
        SessionAcquirer.close(session)

    def open_urls(self, urls: list[str]) -> None:
        for flag, set_ in (
            ("--output", self.opts.output),
            ("--output-dir", self.opts.output_dir),
            ("--wait-for", self.opts.wait_for),
            ("--close-tab", self.opts.close_tab),
        ):
            if set_:
                _LOGGER.warning("%s ignored with --open-browser (no content fetching)", flag)

        valid: list[str] = []
        for raw in urls:
            try:
                valid.append(validate_url(raw))
            except SnagError as exc:
                _LOGGER.warning("Skipping invalid URL '%s': %s", raw, exc.reason)
        if not valid:
            raise NoValidURLs("No valid URLs to open", "snag --open-browser https://example.com")

        _LOGGER.info("Opening %d URL%s in browser...", len(valid), _plural(len(valid)))
        opened = self.acquirer.acquire(
            REQUEST_OPEN,
            port=self.opts.port,
            user_agent=self.opts.user_agent,
            user_data_dir=self.opts.user_data_dir,
        )
        SessionAcquirer.close(opened)
        session = self._require_running()
        with self._in_session():
            browser = session.browser
            total = len(valid)
            for position, url in enumerate(valid, start=1):
                _LOGGER.info("[%d/%d] Opening: %s", position, total, url)
                try:
                    browser.new_page(url)
                except Exception as exc:  # noqa: BLE001
                    _LOGGER.error("[%d/%d] Failed to open: %s", position, total, exc)
                    continue
            _LOGGER.info("Browser will remain open with %d tab%s", total, _plural(total))
            _LOGGER.info("Use 'snag --list-tabs' to see opened tabs")


def _close_quietly(page: Page) -> None:
    try:
        page.close()
    except Exception as exc:  # noqa: BLE001
        _LOGGER.debug("Failed to close tab: %s", exc)


def _plural(n: int) -> str:
    return "" if n == 1 else "s"


__all__ = ["FetchOptions", "Handlers"]
