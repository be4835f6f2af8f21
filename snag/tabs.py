"""Tab enumeration and pattern matching.

Indices are 1-based and only meaningful within one enumeration. Enumeration
sorts by (url, title, target id) so an unchanged browser yields the same
indices every time.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import IO, Any

from .cdp import CdpError
from .errors import BrowserConnection, NoTabMatch, TabIndexInvalid, ValidationError

_LOGGER = logging.getLogger("snag.tabs")

MAX_TAB_LINE_LENGTH = 120
MAX_DISPLAY_URL_LENGTH = 80

NON_FETCHABLE_PREFIXES: tuple[str, ...] = (
    "chrome://",
    "about:",
    "devtools://",
    "chrome-extension://",
    "edge://",
    "brave://",
)

_INDEX_RE = re.compile(r"[+-]?[0-9]+")
_RANGE_RE = re.compile(r"\s*([0-9]+)\s*-\s*([0-9]+)\s*")


@dataclass(frozen=True)
class TabDescriptor:
    index: int
    url: str
    title: str
    target_id: str
    page: Any = field(default=None, compare=False, repr=False)


class TabDirectory:
    def __init__(self, browser: Any) -> None:
        self.browser = browser

    def enumerate(self) -> list[TabDescriptor]:
        """Fresh, sorted snapshot of every open page. One info call per tab."""
        try:
            pages = self.browser.pages()
        except CdpError as exc:
            raise BrowserConnection(
                f"Failed to list browser tabs: {exc}",
                "Check that the browser is still running (snag --doctor)",
            ) from exc
        cached: list[tuple[str, str, str, Any]] = []
        for position, page in enumerate(pages, start=1):
            try:
                info = page.info()
            except CdpError as exc:
                _LOGGER.warning("Failed to get info for tab at position %d (will be excluded from list): %s", position, exc)
                continue
            cached.append((str(info.get("url") or ""), str(info.get("title") or ""), page.target_id, page))

        if len(cached) < len(pages):
            _LOGGER.warning("Excluded %d tab(s) due to inaccessible page info", len(pages) - len(cached))

        cached.sort(key=lambda item: (item[0], item[1], item[2]))
        return [
            TabDescriptor(index=i, url=url, title=title, target_id=tid, page=page)
            for i, (url, title, tid, page) in enumerate(cached, start=1)
        ]


def _index_stage(pattern: str, tabs: Sequence[TabDescriptor]) -> list[TabDescriptor] | None:
    if not _INDEX_RE.fullmatch(pattern):
        return None
    index = int(pattern)
    if index < 1 or index > len(tabs):
        raise TabIndexInvalid(
            f"Tab index {index} out of range (valid range: 1-{len(tabs)})"
            if tabs
            else f"Tab index {index} out of range (no tabs open)",
            "Run 'snag --list-tabs' to see available tabs",
            {"index": index, "count": len(tabs)},
        )
    return [tabs[index - 1]]


def _exact_stage(pattern: str, tabs: Sequence[TabDescriptor]) -> list[TabDescriptor]:
    folded = pattern.casefold()
    return [tab for tab in tabs if tab.url.casefold() == folded]


def _substring_stage(pattern: str, tabs: Sequence[TabDescriptor]) -> list[TabDescriptor]:
    folded = pattern.casefold()
    return [tab for tab in tabs if folded in tab.url.casefold()]


def _regex_stage(pattern: str, tabs: Sequence[TabDescriptor]) -> list[TabDescriptor]:
    try:
        compiled = re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        _LOGGER.warning("Pattern '%s' is not a valid regex (%s); treating as no match", pattern, exc)
        return []
    return [tab for tab in tabs if compiled.search(tab.url)]


MATCH_STAGES: tuple[tuple[str, Callable[[str, Sequence[TabDescriptor]], list[TabDescriptor] | None]], ...] = (
    ("index", _index_stage),
    ("exact URL", _exact_stage),
    ("substring", _substring_stage),
    ("regex", _regex_stage),
)


def match(pattern: str, tabs: Sequence[TabDescriptor]) -> TabDescriptor:
    """Resolve ``pattern`` to one tab; the first stage with a candidate wins."""
    pattern = pattern.strip()
    if not pattern:
        raise ValidationError("Tab pattern cannot be empty", "snag --list-tabs, then snag --tab <index>")
    ordered = sorted(tabs, key=lambda tab: tab.index)
    for name, stage in MATCH_STAGES:
        candidates = stage(pattern, ordered)
        if candidates:
            chosen = candidates[0]
            _LOGGER.debug("Matched tab [%d] via %s: %s", chosen.index, name, chosen.url)
            if len(candidates) > 1:
                _LOGGER.debug("Pattern '%s' matched %d tabs; using the first", pattern, len(candidates))
            return chosen
    raise NoTabMatch(
        f"No tab matches pattern '{pattern}'",
        "Run 'snag --list-tabs' to see available tabs",
        {"pattern": pattern},
    )


def parse_range(pattern: str) -> tuple[int, int] | None:
    """``"2-4"`` -> (2, 4); anything else -> None."""
    found = _RANGE_RE.fullmatch(pattern)
    if not found:
        return None
    start, end = int(found.group(1)), int(found.group(2))
    if start < 1 or end < 1:
        return None
    return start, end


def select_range(tabs: Sequence[TabDescriptor], start: int, end: int) -> list[TabDescriptor]:
    if start > end:
        raise TabIndexInvalid(
            f"Invalid range: start must be <= end (got {start}-{end})",
            "Use a range like --tab 1-3",
        )
    for bound in (start, end):
        if bound > len(tabs):
            raise TabIndexInvalid(
                f"Tab index {bound} out of range in range {start}-{end} (only {len(tabs)} tabs open)",
                "Run 'snag --list-tabs' to see available tabs",
            )
    return list(tabs[start - 1 : end])


def is_non_fetchable_url(url: str) -> bool:
    return url.startswith(NON_FETCHABLE_PREFIXES)


def strip_url_params(url: str) -> str:
    for sep in ("?", "#"):
        pos = url.find(sep)
        if pos != -1:
            url = url[:pos]
    return url


def format_tab_line(index: int, title: str, url: str, max_length: int = MAX_TAB_LINE_LENGTH, verbose: bool = False) -> str:
    if verbose:
        if not title:
            return f"  [{index}] {url}"
        return f"  [{index}] {url} - {title}"

    prefix = f"  [{index}] "
    display_url = strip_url_params(url)
    if len(display_url) > MAX_DISPLAY_URL_LENGTH:
        display_url = display_url[: MAX_DISPLAY_URL_LENGTH - 3] + "..."
    if not title:
        return prefix + display_url

    budget = max_length - len(prefix) - len(display_url) - 3
    if len(title) > budget and budget > 3:
        title = title[: budget - 3] + "..."
    return f"{prefix}{display_url} ({title})"


def display_tab_list(tabs: Iterable[TabDescriptor], out: IO[str], verbose: bool = False) -> None:
    tabs = list(tabs)
    if not tabs:
        out.write("No tabs open in browser\n")
        return
    out.write(f"Available tabs in browser ({len(tabs)} tabs, sorted by URL):\n")
    for tab in tabs:
        out.write(format_tab_line(tab.index, tab.title, tab.url, verbose=verbose) + "\n")


__all__ = [
    "TabDescriptor",
    "TabDirectory",
    "display_tab_list",
    "format_tab_line",
    "is_non_fetchable_url",
    "match",
    "parse_range",
    "select_range",
    "strip_url_params",
]
