"""Input validation, run before any browser work."""

from __future__ import annotations

import logging
import math
import os
import stat
import tempfile
from typing import Any
from urllib.parse import urlsplit

from .config import FORMATS, expand_path, normalize_format
from .errors import (
    FlagConflict,
    InvalidURL,
    NoValidURLs,
    OutputFlagConflict,
    TabURLConflict,
    ValidationError,
)
from .naming import file_extension

_LOGGER = logging.getLogger("snag.validate")

VALID_SCHEMES = frozenset({"http", "https", "file"})


def validate_url(url: str) -> str:
    """Normalise ``url`` (defaulting to https) or raise InvalidURL."""
    url = url.strip()
    if "://" not in url:
        url = "https://" + url
        _LOGGER.debug("No scheme provided, using: %s", url)
    try:
        parsed = urlsplit(url)
    except ValueError as exc:
        raise InvalidURL(f"Invalid URL {url!r}: {exc}", "snag https://example.com") from exc
    if parsed.scheme.lower() not in VALID_SCHEMES:
        raise InvalidURL(
            f"Unsupported URL scheme: {parsed.scheme}",
            "URL must use http://, https://, or file://",
        )
    if parsed.scheme.lower() != "file" and not parsed.netloc:
        raise InvalidURL(f"Invalid URL {url!r}: missing host", "snag https://example.com")
    return url


def validate_timeout(timeout: float) -> float:
    if not math.isfinite(timeout) or timeout <= 0:
        raise ValidationError(f"Invalid timeout: {timeout:g}", "Timeout must be a positive number of seconds, e.g. --timeout 30")
    return timeout


def validate_port(port: int) -> int:
    if port < 1024 or port > 65535:
        raise ValidationError(f"Invalid port: {port}", "Port must be between 1024 and 65535, e.g. --port 9222")
    return port


def validate_format(raw: str | None) -> str:
    fmt = normalize_format(raw)
    if not fmt:
        raise ValidationError("Format cannot be empty", "snag <url> --format md")
    if fmt not in FORMATS:
        raise ValidationError(f"Invalid format '{fmt}'. Supported: {', '.join(FORMATS)}", "snag <url> --format md")
    return fmt


def _is_writable(directory: str) -> bool:
    try:
        fd, scratch = tempfile.mkstemp(prefix=".snag-write-test-", dir=directory)
    except OSError:
        return False
    os.close(fd)
    os.remove(scratch)
    return True


def validate_output_path(path: str) -> str:
    path = path.strip()
    if not path:
        raise ValidationError("Output file path cannot be empty", "snag <url> -o /path/to/output.md")
    if os.path.isdir(path):
        raise ValidationError(f"Output path is a directory, not a file: {path}", "Specify a file path, or use --output-dir")
    if os.path.exists(path) and not os.stat(path).st_mode & stat.S_IWUSR:
        raise ValidationError(f"Cannot write to read-only file: {path}", f"chmod u+w {path}")
    directory = os.path.dirname(path) or "."
    if not os.path.isdir(directory):
        raise ValidationError(f"Output directory does not exist: {directory}", "Create it first or choose an existing directory")
    if not _is_writable(directory):
        raise ValidationError(f"Cannot write to output directory: {directory}", "Choose a writable directory")
    return path


def validate_directory(directory: str) -> str:
    directory = expand_path(directory.strip())
    if not os.path.exists(directory):
        raise ValidationError(f"Directory does not exist: {directory}", f"mkdir -p {directory}")
    if not os.path.isdir(directory):
        raise ValidationError(f"Not a directory: {directory}", "Pass a directory to --output-dir")
    if not _is_writable(directory):
        raise ValidationError(f"Directory not writable: {directory}", f"chmod u+w {directory}")
    return directory


def validate_output_path_escape(output_dir: str, filename: str) -> None:
    if os.path.isabs(filename):
        return
    base = os.path.abspath(output_dir)
    target = os.path.abspath(os.path.join(base, filename))
    if not (target + os.sep).startswith(base + os.sep):
        raise ValidationError(
            f"Output path escapes directory: {filename}",
            "Remove '..' from --output or pick another --output-dir",
        )


def validate_wait_for(selector: str | None) -> str | None:
    if selector is None:
        return None
    selector = selector.strip()
    if not selector:
        _LOGGER.warning("--wait-for is empty, ignoring")
        return None
    return selector


def validate_user_agent(ua: str | None) -> str | None:
    if ua is None:
        return None
    ua = ua.strip()
    if not ua:
        _LOGGER.warning("--user-agent is empty, using default user agent")
        return None
    return ua.replace("\r", " ").replace("\n", " ")


def validate_user_data_dir(path: str | None) -> str | None:
    if path is None:
        return None
    path = path.strip()
    if not path:
        _LOGGER.warning("--user-data-dir is empty, using default profile")
        return None
    path = expand_path(path)
    if not os.path.exists(path):
        raise ValidationError(f"User data directory does not exist: {path}", f"mkdir -p {path}")
    if not os.path.isdir(path):
        raise ValidationError(f"Path is not a directory: {path}", "User data directory must be a directory")
    if not _is_writable(path):
        raise ValidationError(f"Permission denied accessing user data directory: {path}", f"chmod u+rw {path}")
    return path


def check_extension_mismatch(output_file: str | None, fmt: str) -> bool:
    if not output_file:
        return False
    ext = os.path.splitext(output_file)[1].lower()
    if ext == file_extension(fmt):
        return False
    if not ext:
        _LOGGER.warning("Writing %s format to file with no extension: %s", fmt, output_file)
    else:
        _LOGGER.warning("Writing %s format to file with %s extension: %s", fmt, ext, output_file)
    return True


def parse_url_lines(lines: list[str]) -> list[str]:
    urls: list[str] = []
    for number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith(("#", "//")):
            continue
        has_comment = False
        for marker in (" #", " //"):
            pos = line.find(marker)
            if pos != -1:
                line = line[:pos].strip()
                has_comment = True
                break
        if not has_comment and " " in line:
            _LOGGER.warning("Line %d: URL contains space without comment marker - skipping: %s", number, line)
            continue
        if not line.startswith(("http://", "https://", "file://")):
            line = "https://" + line
        try:
            urls.append(validate_url(line))
        except InvalidURL:
            _LOGGER.warning("Line %d: Invalid URL - skipping: %s", number, raw.rstrip())
    return urls


def load_urls_from_file(filename: str) -> list[str]:
    try:
        with open(filename, encoding="utf-8") as fh:
            lines = fh.readlines()
    except OSError as exc:
        raise ValidationError(f"Failed to open URL file: {filename} ({exc.strerror})", "Check the --url-file path") from exc
    urls = parse_url_lines(lines)
    if not urls:
        raise NoValidURLs(f"No valid URLs found in {filename}", "Put one URL per line; # and // start comments")
    _LOGGER.debug("Loaded %d URLs from %s", len(urls), filename)
    return urls


def validate_flag_combinations(args: Any) -> None:
    """Mutual-exclusion checks; ``args`` is the parsed CLI namespace."""
    urls = list(getattr(args, "urls", None) or [])
    tab = getattr(args, "tab", None)
    all_tabs = bool(getattr(args, "all_tabs", False))

    if tab is not None and urls:
        raise TabURLConflict("Cannot use both --tab and URL arguments", "Use either --tab <pattern> or URLs, not both")
    if tab is not None and all_tabs:
        raise TabURLConflict("Cannot use both --tab and --all-tabs", "Use one of --tab or --all-tabs")
    if all_tabs and urls:
        raise TabURLConflict("Cannot use both --all-tabs and URL arguments", "Use either --all-tabs or URLs, not both")

    forced = [
        flag
        for flag, on in (
            ("--force-headless", getattr(args, "force_headless", False)),
            ("--force-visible", getattr(args, "force_visible", False)),
            ("--open-browser", getattr(args, "open_browser", False)),
        )
        if on
    ]
    if len(forced) > 1:
        raise FlagConflict(f"Cannot use {' and '.join(forced)} together", "Pick one browser mode flag")

    output = getattr(args, "output", None)
    if output and getattr(args, "output_dir", None):
        raise OutputFlagConflict("Cannot use both --output and --output-dir", "Use --output for one file or --output-dir for auto-naming")
    if output and (len(urls) > 1 or all_tabs):
        raise OutputFlagConflict(
            "Cannot use --output with multiple URLs, use --output-dir",
            "snag <url1> <url2> --output-dir ./out",
        )


__all__ = [
    "check_extension_mismatch",
    "load_urls_from_file",
    "parse_url_lines",
    "validate_directory",
    "validate_flag_combinations",
    "validate_format",
    "validate_output_path",
    "validate_output_path_escape",
    "validate_port",
    "validate_timeout",
    "validate_url",
    "validate_user_agent",
    "validate_user_data_dir",
    "validate_wait_for",
]
