from __future__ import annotations

import os
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path

from .errors import BrowserNotFound

DEFAULT_PORT = 9222
DEFAULT_TIMEOUT = 30.0
CONNECT_TIMEOUT = 10.0
STABILIZE_TIMEOUT = 3.0

DEFAULT_BINARY_CANDIDATES: list[str] = [
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
    "/Applications/Brave Browser.app/Contents/MacOS/Brave Browser",
    "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/local/bin/chromium",
    "/opt/google/chrome/chrome",
    "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
    "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
    "C:\\Program Files (x86)\\Microsoft\\Edge\\Application\\msedge.exe",
    # Snap builds ignore --user-data-dir; keep them last.
    "/snap/bin/chromium",
]

PATH_NAMES: list[str] = [
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "chrome",
    "microsoft-edge",
    "brave-browser",
]

FORMATS: tuple[str, ...] = ("md", "html", "text", "pdf", "png")
BINARY_FORMATS: frozenset[str] = frozenset({"pdf", "png"})
FORMAT_ALIASES: dict[str, str] = {"markdown": "md", "txt": "text"}
FILE_EXTENSIONS: dict[str, str] = {
    "md": ".md",
    "html": ".html",
    "text": ".txt",
    "pdf": ".pdf",
    "png": ".png",
}


@dataclass(frozen=True, slots=True)
class BrowserRule:
    pattern: str
    name: str
    exclude: str = ""
    profile_mac: str = ""
    profile_linux: str = ""


BROWSER_RULES: tuple[BrowserRule, ...] = (
    BrowserRule("ungoogled", "Ungoogled-Chromium", "", "Chromium", "chromium"),
    BrowserRule("chrome", "Chrome", "chromium", "Google/Chrome", "google-chrome"),
    BrowserRule("chromium", "Chromium", "", "Chromium", "chromium"),
    BrowserRule("msedge", "Edge", "", "Microsoft Edge", "microsoft-edge"),
    BrowserRule("edge", "Edge", "", "Microsoft Edge", "microsoft-edge"),
    BrowserRule("brave", "Brave", "", "BraveSoftware/Brave-Browser", "BraveSoftware/Brave-Browser"),
    BrowserRule("opera", "Opera", "", "com.operasoftware.Opera", "opera"),
    BrowserRule("vivaldi", "Vivaldi", "", "Vivaldi", "vivaldi"),
    BrowserRule("arc", "Arc", "", "Arc", ""),
    BrowserRule("yandex", "Yandex", "", "Yandex/YandexBrowser", "yandex-browser"),
    BrowserRule("thorium", "Thorium", "", "Thorium", "thorium"),
    BrowserRule("slimjet", "Slimjet", "", "Slimjet", "slimjet"),
    BrowserRule("cent", "Cent", "", "CentBrowser", "cent-browser"),
)


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def normalize_format(raw: str | None) -> str:
    fmt = (raw or "").strip().lower()
    return FORMAT_ALIASES.get(fmt, fmt)


def _base_name(path: str) -> str:
    base = os.path.basename(path.rstrip("/\\"))
    for suffix in (".exe", ".app"):
        if base.lower().endswith(suffix):
            base = base[: -len(suffix)]
    return base


def _match_rule(path: str) -> BrowserRule | None:
    lower = _base_name(path).lower()
    for rule in BROWSER_RULES:
        if rule.pattern not in lower:
            continue
        if rule.exclude and rule.exclude in lower:
            continue
        return rule
    return None


def detect_browser_name(path: str) -> str:
    """Human readable browser name for an executable path."""
    rule = _match_rule(path)
    if rule is not None:
        return rule.name
    base = _base_name(path)
    if base:
        return base[:1].upper() + base[1:]
    return "Browser"


def profile_location(path: str) -> tuple[str, bool]:
    """Return (default profile dir, exists) for the browser at ``path``.

    Empty string when the browser is unknown or has no profile on this OS.
    """
    rule = _match_rule(path)
    if rule is None:
        return "", False
    home = Path.home()
    if sys.platform == "darwin":
        if not rule.profile_mac:
            return "", False
        profile = home / "Library" / "Application Support" / rule.profile_mac
    else:
        if not rule.profile_linux:
            return "", False
        profile = home / ".config" / rule.profile_linux
    return str(profile), profile.exists()


@dataclass
class SnagConfig:
    binary_path: str | None
    profile_path: str
    port: int = DEFAULT_PORT
    timeout: float = DEFAULT_TIMEOUT
    connect_timeout: float = CONNECT_TIMEOUT
    extra_flags: list[str] = field(default_factory=list)

    @classmethod
    def detect_binary(cls) -> str | None:
        env_path = os.environ.get("SNAG_BROWSER_BINARY") or os.environ.get("CHROME_PATH")
        if env_path:
            return expand_path(env_path)
        for candidate in DEFAULT_BINARY_CANDIDATES:
            path = Path(candidate)
            if path.exists() and os.access(str(path), os.X_OK):
                return str(path)
        for name in PATH_NAMES:
            found = shutil.which(name)
            if found:
                return found
        return None

    @classmethod
    def from_env(cls) -> SnagConfig:
        profile = expand_path(os.environ.get("SNAG_PROFILE", "~/.snag/browser-profile"))
        port = int(os.environ.get("SNAG_PORT", str(DEFAULT_PORT)))
        timeout = float(os.environ.get("SNAG_TIMEOUT", str(int(DEFAULT_TIMEOUT))))
        flags_raw = os.environ.get("SNAG_BROWSER_FLAGS", "")
        extra_flags = [flag.strip() for flag in flags_raw.split(",") if flag.strip()]
        return cls(
            binary_path=cls.detect_binary(),
            profile_path=profile,
            port=port,
            timeout=timeout,
            extra_flags=extra_flags,
        )

    def require_binary(self) -> str:
        if not self.binary_path:
            raise BrowserNotFound(
                "No Chromium-based browser found",
                "Install Chrome, Chromium, Edge or Brave, or set SNAG_BROWSER_BINARY",
            )
        return self.binary_path

    @property
    def browser_name(self) -> str:
        return detect_browser_name(self.binary_path) if self.binary_path else "Browser"
