from __future__ import annotations

import atexit
import contextlib
import logging
import os
import shutil
import signal
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass

from .cdp import CdpError, resolve_control_url
from .config import SnagConfig, expand_path
from .errors import BrowserConnection

_LOGGER = logging.getLogger("snag.launcher")


@dataclass(frozen=True, slots=True)
class LaunchPlan:
    headless: bool
    detach: bool
    user_agent: str | None = None
    user_data_dir: str | None = None


class BrowserLauncher:
    """Start (and, when we own it, stop) one browser process."""

    def __init__(self, config: SnagConfig, plan: LaunchPlan, port: int | None = None) -> None:
        self.config = config
        self.plan = plan
        self.port = int(port if port is not None else config.port)
        self.process: subprocess.Popen | None = None
        self.user_data_dir: str | None = None
        self._temp_profile: str | None = None

    def _profile_dir(self) -> str:
        if self.plan.user_data_dir:
            return expand_path(self.plan.user_data_dir)
        if self.plan.detach:
            # Detached browsers outlive us; keep their logins in the persistent profile.
            profile = expand_path(self.config.profile_path)
            os.makedirs(profile, exist_ok=True)
            return profile
        self._temp_profile = tempfile.mkdtemp(prefix="snag-profile-")
        return self._temp_profile

    def build_launch_command(self) -> list[str]:
        binary = self.config.require_binary()
        if self.user_data_dir is None:
            self.user_data_dir = self._profile_dir()
        flags = [
            f"--remote-debugging-port={self.port}",
            f"--user-data-dir={self.user_data_dir}",
            "--remote-allow-origins=*",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-blink-features=AutomationControlled",
        ]
        if self.plan.headless:
            flags.append("--headless=new")
        if self.plan.user_agent:
            flags.append(f"--user-agent={self.plan.user_agent}")
        flags.extend(self.config.extra_flags)
        return [binary, *flags, "about:blank"]

    def launch(self) -> subprocess.Popen:
        cmd = self.build_launch_command()
        _LOGGER.debug("Launching: %s", " ".join(cmd))

        kwargs: dict = {
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.DEVNULL,
            "stderr": subprocess.DEVNULL,
        }
        if self.plan.detach:
            if sys.platform == "win32":
                kwargs["creationflags"] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
            else:
                # New session: no controlling terminal, so no SIGHUP when it closes.
                kwargs["start_new_session"] = True

        try:
            self.process = subprocess.Popen(cmd, **kwargs)  # noqa: S603
        except OSError as exc:
            self._remove_temp_profile()
            raise BrowserConnection(
                f"Failed to launch browser: {exc}",
                "Check the browser path or set SNAG_BROWSER_BINARY",
                {"command": cmd},
            ) from exc

        if not self.plan.detach:
            atexit.register(self.stop)
        return self.process

    def wait_ready(self, timeout: float | None = None) -> str:
        """Poll the CDP endpoint until it answers; return the control URL."""
        limit = self.config.connect_timeout if timeout is None else timeout
        deadline = time.time() + limit
        last_error: Exception | None = None
        while time.time() < deadline:
            proc = self.process
            if proc is not None and not self.plan.detach and proc.poll() is not None:
                raise BrowserConnection(
                    f"Browser exited during startup (code {proc.returncode})",
                    f"Is another browser already using port {self.port} or the same profile?",
                )
            try:
                return resolve_control_url(self.port, timeout=0.5)
            except CdpError as exc:
                last_error = exc
            time.sleep(0.1)
        raise BrowserConnection(
            f"Browser did not expose CDP on port {self.port} within {limit:g}s",
            "Try a different --port or close other browser instances",
            {"cause": str(last_error) if last_error else ""},
        )

    def stop(self, *, timeout: float = 2.0) -> bool:
        """Best-effort stop of the process we launched."""
        proc = self.process
        if proc is None or self.plan.detach:
            return False
        with contextlib.suppress(Exception):
            atexit.unregister(self.stop)

        if proc.poll() is None:
            with contextlib.suppress(Exception):
                proc.terminate()
            try:
                proc.wait(timeout=max(0.1, float(timeout)))
            except subprocess.TimeoutExpired:
                with contextlib.suppress(Exception):
                    proc.kill()
                with contextlib.suppress(Exception):
                    proc.wait(timeout=1.0)
        self.process = None
        self._remove_temp_profile()
        return True

    def _remove_temp_profile(self) -> None:
        if self._temp_profile:
            shutil.rmtree(self._temp_profile, ignore_errors=True)
            self._temp_profile = None


def _run(cmd: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(cmd, capture_output=True, text=True, check=False)  # noqa: S603


def _pids_on_port(port: int) -> list[int]:
    try:
        res = _run(["lsof", "-ti", f":{int(port)}"])
    except FileNotFoundError:
        _LOGGER.debug("lsof not available")
        return []
    if res.returncode != 0:
        return []
    pids: list[int] = []
    for line in res.stdout.splitlines():
        with contextlib.suppress(ValueError):
            pids.append(int(line.strip()))
    return pids


def _debugging_pids(binary: str) -> list[int]:
    exe = os.path.basename(binary)
    if exe.endswith(".app"):
        exe = exe[: -len(".app")]
    res = _run(["ps", "aux"])
    pids: list[int] = []
    for line in res.stdout.splitlines():
        if exe not in line or "--remote-debugging-port" not in line or "grep" in line:
            continue
        fields = line.split()
        if len(fields) < 2:
            continue
        with contextlib.suppress(ValueError):
            pids.append(int(fields[1]))
            _LOGGER.debug("  Found PID %s: %s", fields[1], line[:80])
    return pids


def kill_browsers(config: SnagConfig, port: int | None = None) -> int:
    """Kill the browser on ``port``, or every debugging-enabled browser process.

    Returns the number of processes killed.
    """
    if port:
        pids = _pids_on_port(port)[:1]
        if not pids:
            _LOGGER.info("No browser running on port %d", port)
            return 0
    else:
        pids = _debugging_pids(config.require_binary())
        if not pids:
            _LOGGER.info("No browser processes found")
            return 0

    killed = 0
    for pid in pids:
        try:
            os.kill(pid, signal.SIGKILL)
        except OSError as exc:
            _LOGGER.warning("Failed to kill PID %d: %s", pid, exc)
            continue
        killed += 1
        _LOGGER.debug("Killed PID %d", pid)
    if killed:
        _LOGGER.info("Killed %d process(es)", killed)
    return killed


__all__ = ["BrowserLauncher", "LaunchPlan", "kill_browsers"]
