from __future__ import annotations

import io
import logging
import signal

import pytest

from snag import __version__
from snag import convert as convert_mod
from snag import main as main_mod
from snag.cdp import CdpError, CdpTimeoutError
from snag.handlers import Handlers
from snag.main import CliFormatter, _install_signal_handlers, main
from snag.session_manager import MODE_HEADLESS, MODE_REUSE, Session, active_session


class RecordingHandlers:
    calls: list[tuple[str, object]] = []
    last_opts = None

    def __init__(self, config, opts) -> None:
        RecordingHandlers.last_opts = opts

    def __getattr__(self, name: str):
        def record(*args):
            RecordingHandlers.calls.append((name, args[0] if args else None))

        return record


@pytest.fixture
def recorder(monkeypatch):
    RecordingHandlers.calls = []
    RecordingHandlers.last_opts = None
    monkeypatch.setattr(main_mod, "Handlers", RecordingHandlers)
    return RecordingHandlers


@pytest.mark.parametrize(
    "argv,message",
    [
        (["--tab", "1", "https://a.example"], "Cannot use both --tab and URL arguments"),
        (["--force-headless", "--force-visible", "https://a.example"], "Cannot use --force-headless and --force-visible together"),
        (["-o", "x.md", "https://a.example", "https://b.example"], "Cannot use --output with multiple URLs"),
        (["https://a.example", "--format", "docx"], "Invalid format 'docx'"),
        (["https://a.example", "--port", "80"], "Invalid port: 80"),
        ([], "URL argument is required"),
    ],
)
def test_errors_exit_nonzero_before_browser_work(argv, message, recorder, capsys) -> None:
    assert main(argv) == 1
    err = capsys.readouterr().err
    assert f"error: {message}" in err
    assert "Try:" in err
    assert recorder.calls == []


def test_version(capsys) -> None:
    with pytest.raises(SystemExit) as info:
        main(["--version"])
    assert info.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_single_url_is_normalised(recorder) -> None:
    assert main(["example.com", "--timeout", "5"]) == 0
    assert recorder.calls == [("fetch_url", "https://example.com")]
    assert recorder.last_opts.timeout == 5
    assert recorder.last_opts.timeout_set is True


def test_multiple_urls_go_to_batch(recorder, tmp_path) -> None:
    assert main(["a.example", "b.example", "-d", str(tmp_path)]) == 0
    assert recorder.calls == [("fetch_urls", ["a.example", "b.example"])]
    assert recorder.last_opts.output_dir == str(tmp_path)


def test_url_file_is_merged(recorder, tmp_path) -> None:
    url_file = tmp_path / "urls.txt"
    url_file.write_text("https://x.example\n# comment\ny.example\n", encoding="utf-8")

    assert main(["https://a.example", "--url-file", str(url_file)]) == 0
    assert recorder.calls == [("fetch_urls", ["https://a.example", "https://x.example", "https://y.example"])]


def test_list_tabs_overrides_urls(recorder, capsys) -> None:
    assert main(["--list-tabs", "https://a.example"]) == 0
    assert recorder.calls == [("list_tabs", None)]
    assert "warning: --list-tabs overrides URL arguments" in capsys.readouterr().err


@pytest.mark.parametrize(
    "argv,expected",
    [
        (["--open-browser"], ("open_browser", None)),
        (["-b", "https://a.example"], ("open_urls", ["https://a.example"])),
        (["--all-tabs"], ("fetch_all_tabs", None)),
        (["--tab", "github"], ("fetch_tab", "github")),
    ],
)
def test_dispatch(argv, expected, recorder) -> None:
    assert main(argv) == 0
    assert recorder.calls == [expected]


def test_formatter_prefixes_and_suggestion() -> None:
    formatter = CliFormatter("%(message)s")
    record = logging.LogRecord("snag", logging.ERROR, __file__, 1, "boom", None, None)
    record.suggestion = "snag --help"
    assert formatter.format(record) == "error: boom\n  Try: snag --help"

    record = logging.LogRecord("snag", logging.INFO, __file__, 1, "fine", None, None)
    assert formatter.format(record) == "fine"


class FailingPage:
    def __init__(self, url: str = "https://example.com", *, html_error: Exception | None = None) -> None:
        self.target_id = "t1"
        self.url = url
        self.html_error = html_error

    def navigate(self, url: str, timeout: float) -> None:
        self.url = url

    def wait_stable(self, timeout: float) -> bool:
        return True

    def wait_for_selector(self, selector: str, timeout: float | None = None) -> bool:
        return True

    def status_code(self) -> int:
        return 200

    def has(self, selector: str) -> bool:
        return False

    def info(self) -> dict:
        return {"url": self.url, "title": "Example"}

    def html(self) -> str:
        if self.html_error is not None:
            raise self.html_error
        return "<h1>Example</h1>"

    def close(self) -> None:
        pass


class FailingBrowser:
    def __init__(self, page: FailingPage | None = None, pages_error: Exception | None = None) -> None:
        self.page = page or FailingPage()
        self.pages_error = pages_error

    def pages(self) -> list:
        if self.pages_error is not None:
            raise self.pages_error
        return [self.page]

    def new_page(self, url: str = "about:blank") -> FailingPage:
        return self.page

    def close(self) -> None:
        pass


class ReuseAcquirer:
    def __init__(self, browser: FailingBrowser) -> None:
        self.browser = browser

    def acquire(self, request, *, port=None, user_agent=None, user_data_dir=None) -> Session:
        return Session(port=port or 9222, owned_by_us=False, mode=MODE_REUSE, browser=self.browser)


def _use_browser(monkeypatch, browser: FailingBrowser) -> None:
    monkeypatch.setattr(
        main_mod,
        "Handlers",
        lambda config, opts: Handlers(config, opts, acquirer=ReuseAcquirer(browser), out=io.StringIO()),
    )


@pytest.mark.parametrize(
    "argv,browser,message",
    [
        (
            ["https://example.com"],
            FailingBrowser(FailingPage(html_error=CdpTimeoutError("Runtime.evaluate timed out after 10s"))),
            "error: Failed to extract HTML from https://example.com",
        ),
        (
            ["--list-tabs"],
            FailingBrowser(pages_error=CdpError("Target.getTargets: connection reset")),
            "error: Failed to list browser tabs",
        ),
        (
            ["--tab", "1"],
            FailingBrowser(FailingPage(html_error=CdpError("Runtime.evaluate: target closed"))),
            "error: Lost connection to the browser on port 9222",
        ),
    ],
)
def test_browser_failures_exit_one_with_error_line(argv, browser, message, monkeypatch, capsys) -> None:
    monkeypatch.delenv("SNAG_PORT", raising=False)
    _use_browser(monkeypatch, browser)

    assert main(argv) == 1

    err = capsys.readouterr().err
    assert message in err
    assert "Try:" in err
    assert "Traceback" not in err


def test_write_failure_exits_one(monkeypatch, capsys, tmp_path) -> None:
    def no_space(path, mode="r", *args, **kwargs):
        raise OSError(28, "No space left on device", path)

    _use_browser(monkeypatch, FailingBrowser())
    monkeypatch.setattr(convert_mod, "open", no_space, raising=False)

    assert main(["https://example.com", "-o", str(tmp_path / "out.md")]) == 1
    assert "error: Failed to write output file" in capsys.readouterr().err


class CountingLauncher:
    def __init__(self) -> None:
        self.stops = 0

    def stop(self) -> bool:
        self.stops += 1
        return True


class ClosingBrowser:
    def close(self) -> None:
        pass


def test_signal_handler_tears_down_once_and_exits_with_signal_code(monkeypatch) -> None:
    codes: list[int] = []
    monkeypatch.setattr(main_mod.os, "_exit", codes.append)
    launcher = CountingLauncher()
    active_session.set(
        Session(port=9222, owned_by_us=True, mode=MODE_HEADLESS, browser=ClosingBrowser(), launcher=launcher)
    )

    previous = _install_signal_handlers()
    try:
        signal.getsignal(signal.SIGINT)(signal.SIGINT, None)
        signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
    finally:
        for signum, handler in previous.items():
            if handler is not None:
                signal.signal(signum, handler)

    assert codes == [130, 143]
    assert launcher.stops == 1
    assert active_session.get() is None
