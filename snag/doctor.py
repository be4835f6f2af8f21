"""``snag --doctor``: environment and browser diagnostics."""

from __future__ import annotations

import os
import platform
import subprocess
import sys
from dataclasses import dataclass, field
from typing import IO

from . import __version__
from .browser import BrowserClient
from .config import DEFAULT_PORT, SnagConfig, profile_location
from .errors import SnagError

PORT_CHECK_TIMEOUT = 3.0
ENV_VARS = ("SNAG_BROWSER_BINARY", "CHROME_PATH", "SNAG_PROFILE", "SNAG_PORT", "SNAG_TIMEOUT", "SNAG_BROWSER_FLAGS")


@dataclass
class PortStatus:
    port: int
    running: bool = False
    tab_count: int = 0
    error: str = ""


@dataclass
class DoctorReport:
    version: str
    python_version: str
    os_arch: str
    working_dir: str
    browser_name: str = ""
    browser_path: str = ""
    browser_version: str = ""
    profile_path: str = ""
    profile_exists: bool = False
    snag_profile: str = ""
    ports: list[PortStatus] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)


def check_port(port: int, timeout: float = PORT_CHECK_TIMEOUT) -> PortStatus:
    status = PortStatus(port=port)
    try:
        browser = BrowserClient.connect(port, timeout)
    except SnagError as exc:
        status.error = exc.reason
        return status
    try:
        status.tab_count = len(browser.page_ids(timeout))
        status.running = True
    except Exception as exc:  # noqa: BLE001
        status.error = str(exc)
    finally:
        browser.close()
    return status


def browser_version(path: str) -> str:
    try:
        res = subprocess.run([path, "--version"], capture_output=True, text=True, timeout=10, check=False)  # noqa: S603
    except (OSError, subprocess.TimeoutExpired):
        return ""
    return res.stdout.strip()


def collect(config: SnagConfig, port: int = DEFAULT_PORT) -> DoctorReport:
    try:
        cwd = os.getcwd()
    except OSError:
        cwd = "(unknown)"
    report = DoctorReport(
        version=__version__,
        python_version=platform.python_version(),
        os_arch=f"{sys.platform}/{platform.machine()}",
        working_dir=cwd,
        snag_profile=config.profile_path,
        env={name: os.environ.get(name, "") for name in ENV_VARS},
    )
    if config.binary_path:
        report.browser_path = config.binary_path
        report.browser_name = config.browser_name
        report.browser_version = browser_version(config.binary_path)
        report.profile_path, report.profile_exists = profile_location(config.binary_path)

    report.ports.append(check_port(DEFAULT_PORT))
    if port != DEFAULT_PORT:
        report.ports.append(check_port(port))
    return report


def _section(out: IO[str], title: str) -> None:
    out.write(f"\n{title}\n{'─' * len(title)}\n")


def _item(out: IO[str], label: str, value: str) -> None:
    out.write(f"  {label + ':':<20} {value}\n")


def _check(out: IO[str], label: str, value: str, ok: bool) -> None:
    _item(out, label, f"{'✓' if ok else '✗'} {value}")


def render(report: DoctorReport, out: IO[str]) -> None:
    out.write("snag Doctor Report\n==================\n")

    _section(out, "Version Information")
    _item(out, "snag version", report.version)
    _item(out, "Python version", report.python_version)
    _item(out, "OS/Arch", report.os_arch)

    _section(out, "Working Directory")
    out.write(f"  {report.working_dir}\n")

    _section(out, "Browser Detection")
    if not report.browser_path:
        _check(out, "Detected", "No Chromium-based browser found", False)
        _item(out, "Path", "(none)")
        _item(out, "Version", "(none)")
    else:
        _item(out, "Detected", report.browser_name)
        _item(out, "Path", report.browser_path)
        _item(out, "Version", report.browser_version or "(unknown)")

    _section(out, "Profile Location")
    if report.profile_path:
        _check(out, report.browser_name, report.profile_path, report.profile_exists)
    _check(out, "snag profile", report.snag_profile, os.path.isdir(report.snag_profile))

    _section(out, "Connection Status")
    for status in report.ports:
        if status.running:
            _check(out, f"Port {status.port}", f"Running ({status.tab_count} tabs open)", True)
        else:
            _check(out, f"Port {status.port}", "Not running", False)

    _section(out, "Environment Variables")
    for name, value in report.env.items():
        _item(out, name, value or "(not set)")
