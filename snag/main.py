from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from collections.abc import Sequence

from . import __version__
from .config import SnagConfig
from .doctor import collect, render
from .errors import InvalidURL, SnagError
from .handlers import FetchOptions, Handlers
from .launcher import kill_browsers
from .session_manager import REQUEST_AUTO, REQUEST_FORCE_HEADLESS, REQUEST_FORCE_VISIBLE, active_session
from .validate import (
    check_extension_mismatch,
    load_urls_from_file,
    validate_directory,
    validate_flag_combinations,
    validate_format,
    validate_output_path,
    validate_port,
    validate_timeout,
    validate_url,
    validate_user_agent,
    validate_user_data_dir,
    validate_wait_for,
)

_LOGGER = logging.getLogger("snag")

TEARDOWN_GRACE = 5.0


class CliFormatter(logging.Formatter):
    """Plain messages; warnings and errors get a prefix, suggestions a ``Try:`` line."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if record.levelno >= logging.ERROR:
            message = f"error: {message}"
        elif record.levelno >= logging.WARNING:
            message = f"warning: {message}"
        suggestion = getattr(record, "suggestion", "")
        if suggestion:
            message = f"{message}\n  Try: {suggestion}"
        return message


def configure_logging(*, quiet: bool = False, verbose: bool = False, debug: bool = False) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose or debug:
        level = logging.DEBUG
    else:
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(CliFormatter("%(message)s"))
    for old in list(_LOGGER.handlers):
        _LOGGER.removeHandler(old)
    _LOGGER.addHandler(handler)
    _LOGGER.setLevel(level)
    # CDP wire traffic only with --debug.
    logging.getLogger("snag.cdp").setLevel(logging.DEBUG if debug else max(level, logging.INFO))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snag",
        description="Fetch rendered web content (Markdown, HTML, text, PDF, PNG) through a Chromium browser.",
    )
    parser.add_argument("urls", nargs="*", metavar="URL", help="page(s) to fetch")

    out = parser.add_argument_group("output")
    out.add_argument("-o", "--output", metavar="FILE", help="save to FILE instead of stdout")
    out.add_argument("-d", "--output-dir", metavar="DIR", help="save with an auto-generated name in DIR")
    out.add_argument("-f", "--format", default="md", help="md, html, text, pdf or png (default: md)")

    page = parser.add_argument_group("page")
    page.add_argument("--timeout", type=float, default=None, help="page load timeout in seconds (default: 30)")
    page.add_argument("-w", "--wait-for", metavar="SELECTOR", help="wait for a CSS selector before extracting")
    page.add_argument("--user-agent", help="custom user agent (new browsers only)")
    page.add_argument("--user-data-dir", metavar="DIR", help="browser profile directory (new browsers only)")
    page.add_argument("--url-file", metavar="FILE", help="read URLs from FILE, one per line")

    browser = parser.add_argument_group("browser")
    browser.add_argument("-p", "--port", type=int, default=None, help="remote debugging port (default: 9222)")
    browser.add_argument("-c", "--close-tab", action="store_true", help="close the tab after fetching")
    browser.add_argument("--force-headless", action="store_true", help="always launch a new headless browser")
    browser.add_argument("--force-visible", action="store_true", help="launch a visible browser (for logins)")
    browser.add_argument("-b", "--open-browser", action="store_true", help="open a persistent visible browser")
    browser.add_argument("--kill-browser", action="store_true", help="kill browsers started with remote debugging")

    tabs = parser.add_argument_group("tabs")
    tabs.add_argument("-l", "--list-tabs", action="store_true", help="list tabs of the running browser")
    tabs.add_argument("-t", "--tab", metavar="PATTERN", help="fetch from an open tab (index, range, URL, substring or regex)")
    tabs.add_argument("-a", "--all-tabs", action="store_true", help="fetch every open tab into --output-dir")

    misc = parser.add_argument_group("logging")
    misc.add_argument("--verbose", action="store_true", help="verbose logging")
    misc.add_argument("-q", "--quiet", action="store_true", help="errors only")
    misc.add_argument("--debug", action="store_true", help="debug logging incl. CDP traffic")
    misc.add_argument("--doctor", action="store_true", help="print diagnostics and exit")
    misc.add_argument("--version", action="version", version=f"snag {__version__}")
    return parser


def _install_signal_handlers() -> dict[int, object]:
    def _on_signal(signum: int, _frame: object) -> None:
        name = signal.Signals(signum).name
        _LOGGER.warning("Received %s, cleaning up...", name)
        # Teardown takes the session lock; never block the interrupted thread on it.
        worker = threading.Thread(target=active_session.release, name="snag-teardown", daemon=True)
        worker.start()
        worker.join(TEARDOWN_GRACE)
        os._exit(128 + signum)

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.getsignal(signum)
        signal.signal(signum, _on_signal)
    return previous


def _options(args: argparse.Namespace, config: SnagConfig) -> FetchOptions:
    fmt = validate_format(args.format)
    port = validate_port(args.port if args.port is not None else config.port)
    timeout = validate_timeout(args.timeout if args.timeout is not None else config.timeout)

    output = args.output.strip() if args.output else None
    if output:
        validate_output_path(output)
        check_extension_mismatch(output, fmt)
    output_dir = validate_directory(args.output_dir or ".") if args.output_dir is not None else None

    if args.force_headless:
        request = REQUEST_FORCE_HEADLESS
    elif args.force_visible:
        request = REQUEST_FORCE_VISIBLE
    else:
        request = REQUEST_AUTO

    return FetchOptions(
        urls=list(args.urls),
        fmt=fmt,
        output=output,
        output_dir=output_dir,
        port=port,
        timeout=timeout,
        timeout_set=args.timeout is not None,
        wait_for=validate_wait_for(args.wait_for),
        user_agent=validate_user_agent(args.user_agent),
        user_data_dir=validate_user_data_dir(args.user_data_dir),
        close_tab=args.close_tab,
        request=request,
        verbose=args.verbose or args.debug,
    )


def run(args: argparse.Namespace, config: SnagConfig, parser: argparse.ArgumentParser) -> None:
    if args.doctor:
        render(collect(config, args.port or config.port), sys.stdout)
        return
    if args.kill_browser:
        kill_browsers(config, args.port)
        return

    if args.url_file:
        args.urls = [*args.urls, *load_urls_from_file(args.url_file)]
    if args.list_tabs and args.urls:
        _LOGGER.warning("--list-tabs overrides URL arguments")
        args.urls = []

    validate_flag_combinations(args)
    opts = _options(args, config)
    handlers = Handlers(config, opts)

    if args.open_browser:
        if opts.urls:
            handlers.open_urls(opts.urls)
        else:
            handlers.open_browser()
    elif args.list_tabs:
        handlers.list_tabs()
    elif args.all_tabs:
        handlers.fetch_all_tabs()
    elif args.tab is not None:
        handlers.fetch_tab(args.tab)
    elif len(opts.urls) == 1:
        handlers.fetch_url(validate_url(opts.urls[0]))
    elif opts.urls:
        handlers.fetch_urls(opts.urls)
    else:
        parser.print_usage(sys.stderr)
        raise InvalidURL("URL argument is required", "snag <url>")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(quiet=args.quiet, verbose=args.verbose, debug=args.debug)
    previous = _install_signal_handlers()

    try:
        config = SnagConfig.from_env()
        run(args, config, parser)
    except SnagError as exc:
        _LOGGER.error("%s", exc.reason, extra={"suggestion": exc.suggestion})
        return 1
    except ValueError as exc:
        _LOGGER.error("Invalid configuration: %s", exc)
        return 1
    finally:
        active_session.release()
        for signum, handler in previous.items():
            if handler is not None:
                signal.signal(signum, handler)
    return 0


if __name__ == "__main__":
    sys.exit(main())
