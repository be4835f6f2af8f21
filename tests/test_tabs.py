from __future__ import annotations

import io
from typing import Any

import pytest

from snag.cdp import CdpError
from snag.errors import NoTabMatch, TabIndexInvalid, ValidationError
from snag.tabs import (
    TabDescriptor,
    TabDirectory,
    display_tab_list,
    format_tab_line,
    is_non_fetchable_url,
    match,
    parse_range,
    select_range,
    strip_url_params,
)

TABS = [
    TabDescriptor(1, "https://EXAMPLE.com/", "Example", "t1"),
    TabDescriptor(2, "https://github.com/x", "GitHub", "t2"),
    TabDescriptor(3, "https://example.com/2", "Example 2", "t3"),
]


class DummyPage:
    def __init__(self, target_id: str, url: str, title: str, *, broken: bool = False) -> None:
        self.target_id = target_id
        self._info = {"url": url, "title": title}
        self.broken = broken
        self.info_calls = 0

    def info(self) -> dict[str, Any]:
        self.info_calls += 1
        if self.broken:
            raise CdpError("target gone")
        return dict(self._info)


class DummyBrowser:
    def __init__(self, pages: list[DummyPage]) -> None:
        self._pages = pages
        self.pages_calls = 0

    def pages(self) -> list[DummyPage]:
        self.pages_calls += 1
        return list(self._pages)


def test_enumerate_uses_one_info_call_per_tab_and_sorts() -> None:
    pages = [
        DummyPage("c", "https://z.example", "Z"),
        DummyPage("a", "https://a.example", "A"),
        DummyPage("b", "https://a.example", "A"),
    ]
    browser = DummyBrowser(pages)

    tabs = TabDirectory(browser).enumerate()

    assert browser.pages_calls == 1
    assert [p.info_calls for p in pages] == [1, 1, 1]
    assert [(t.index, t.target_id) for t in tabs] == [(1, "a"), (2, "b"), (3, "c")]
    assert tabs[0].page is pages[1]


def test_enumerate_is_fresh_and_stable() -> None:
    browser = DummyBrowser([DummyPage("x", "https://b.example", "B"), DummyPage("y", "https://a.example", "A")])
    directory = TabDirectory(browser)

    first = directory.enumerate()
    second = directory.enumerate()

    assert first == second
    assert browser.pages_calls == 2


def test_enumerate_skips_tabs_without_info() -> None:
    pages = [DummyPage("a", "https://a.example", "A"), DummyPage("b", "", "", broken=True)]

    tabs = TabDirectory(DummyBrowser(pages)).enumerate()

    assert [t.target_id for t in tabs] == ["a"]


def test_match_exact_or_substring_prefers_lowest_index() -> None:
    assert match("example.com", TABS).index == 1


def test_match_exact_url_is_case_insensitive_literal() -> None:
    assert match("https://example.com/", TABS).index == 1
    assert match("HTTPS://EXAMPLE.COM/2", TABS).index == 3


def test_match_integer_wins_over_substring() -> None:
    assert match("2", TABS).index == 2


@pytest.mark.parametrize("pattern", ["99", "0", "-1", "+4"])
def test_match_out_of_range_index_is_terminal(pattern: str) -> None:
    with pytest.raises(TabIndexInvalid):
        match(pattern, TABS)


def test_match_substring() -> None:
    assert match("gith", TABS).index == 2


def test_match_regex_stage() -> None:
    assert match(r"github\.com/[a-z]$", TABS).index == 2
    assert match(r"EXAMPLE\.com/\d", TABS).index == 3


def test_match_invalid_regex_is_no_match() -> None:
    with pytest.raises(NoTabMatch):
        match("([", TABS)


def test_match_nothing() -> None:
    with pytest.raises(NoTabMatch):
        match("gitlab", TABS)


def test_parse_range() -> None:
    assert parse_range("1-3") == (1, 3)
    assert parse_range(" 2 - 2 ") == (2, 2)
    assert parse_range("-1") is None
    assert parse_range("0-2") is None
    assert parse_range("github") is None


def test_select_range() -> None:
    assert [t.index for t in select_range(TABS, 2, 3)] == [2, 3]
    with pytest.raises(TabIndexInvalid):
        select_range(TABS, 3, 2)
    with pytest.raises(TabIndexInvalid):
        select_range(TABS, 1, 4)


def test_non_fetchable_urls() -> None:
    assert is_non_fetchable_url("chrome://newtab/")
    assert is_non_fetchable_url("about:blank")
    assert is_non_fetchable_url("devtools://devtools/bundled")
    assert not is_non_fetchable_url("https://example.com")


def test_strip_url_params() -> None:
    assert strip_url_params("https://a.example/p?q=1#frag") == "https://a.example/p"
    assert strip_url_params("https://a.example/p#frag") == "https://a.example/p"


def test_format_tab_line() -> None:
    assert format_tab_line(1, "Title", "https://a.example/?q=1") == "  [1] https://a.example/ (Title)"
    assert format_tab_line(2, "", "https://a.example") == "  [2] https://a.example"
    assert format_tab_line(3, "Title", "https://a.example/?q=1", verbose=True) == "  [3] https://a.example/?q=1 - Title"


def test_format_tab_line_truncates_to_line_limit() -> None:
    line = format_tab_line(1, "T" * 300, "https://a.example/" + "p" * 200)
    assert len(line) <= 120
    assert line.endswith("...)")


def test_display_tab_list() -> None:
    buf = io.StringIO()
    display_tab_list(TABS, buf)
    lines = buf.getvalue().splitlines()
    assert lines[0] == "Available tabs in browser (3 tabs, sorted by URL):"
    assert lines[2] == "  [2] https://github.com/x (GitHub)"

    empty = io.StringIO()
    display_tab_list([], empty)
    assert empty.getvalue() == "No tabs open in browser\n"


@pytest.mark.parametrize("pattern", ["", "   "])
def test_match_rejects_empty_pattern(pattern: str) -> None:
    with pytest.raises(ValidationError):
        match(pattern, TABS)
