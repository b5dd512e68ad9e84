"""Shared data structures, errors and helpers for dmxwifi."""

from __future__ import annotations

import enum
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# Signal assigned to scan records whose level field cannot be parsed.
MIN_SIGNAL = -1000


class ExitCode(enum.IntEnum):
    """Process exit statuses for the ``dmxwifi`` command."""

    OK = 0
    USAGE = 2
    SCAN_UNAVAILABLE = 3
    SCAN_TIMEOUT = 4
    ASSOCIATION_REJECTED = 5
    STORE_UNREADABLE = 6
    STORE_UNWRITABLE = 7
    NOT_IN_RANGE = 8
    CHANNEL_UNAVAILABLE = 9
    SELECTOR_UNAVAILABLE = 10


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class DmxWifiError(Exception):
    """Base class for every failure the CLI reports with an exit code."""

    exit_code: ExitCode = ExitCode.USAGE


class ConfigError(DmxWifiError):
    """An explicitly requested config file is missing or malformed."""

    exit_code = ExitCode.USAGE


class StoreError(DmxWifiError):
    """The credential store could not be used."""


class StoreUnreadable(StoreError):
    exit_code = ExitCode.STORE_UNREADABLE


class StoreUnwritable(StoreError):
    exit_code = ExitCode.STORE_UNWRITABLE


class ChannelUnavailable(DmxWifiError):
    """The supplicant control channel could not be reached or refused a command."""

    exit_code = ExitCode.CHANNEL_UNAVAILABLE


class ScanUnavailable(ChannelUnavailable):
    exit_code = ExitCode.SCAN_UNAVAILABLE


class ScanTimeout(DmxWifiError):
    exit_code = ExitCode.SCAN_TIMEOUT


class AssociationRejected(DmxWifiError):
    exit_code = ExitCode.ASSOCIATION_REJECTED


class NetworkNotInRange(DmxWifiError):
    exit_code = ExitCode.NOT_IN_RANGE


class SelectorUnavailable(DmxWifiError):
    exit_code = ExitCode.SELECTOR_UNAVAILABLE


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class NetworkObservation:
    """A network seen in the current scan."""

    identifier: str
    signal: int = MIN_SIGNAL   # dBm
    secured: bool = False
    bssid: str = ""
    frequency: int = 0         # MHz


@dataclass
class CatalogEntry:
    """One row of the merged selection list.

    ``observation`` is ``None`` for remembered networks that are not in
    range right now.
    """

    identifier: str
    saved: bool = False
    rank: int = 0
    observation: NetworkObservation | None = None

    @property
    def in_range(self) -> bool:
        return self.observation is not None

    @property
    def signal(self) -> int | None:
        return self.observation.signal if self.observation else None


# ---------------------------------------------------------------------------
# Collaborator protocols (composition seams)
# ---------------------------------------------------------------------------

class ControlChannel(Protocol):
    """Protocol for the wireless supplicant control channel.

    Every method may raise :class:`ChannelUnavailable`.
    """

    def trigger_scan(self) -> bool:
        """Request a scan; False means one was already in progress."""
        ...  # pragma: no cover

    def get_scan_results(self) -> list[NetworkObservation]:
        ...  # pragma: no cover

    def find_network(self, identifier: str) -> str | None:
        ...  # pragma: no cover

    def add_network(self, identifier: str) -> str:
        ...  # pragma: no cover

    def set_secret(self, handle: str, secret: str) -> None:
        ...  # pragma: no cover

    def select_and_enable(self, handle: str) -> None:
        ...  # pragma: no cover

    def restore_selection(self) -> None:
        """Re-enable networks that select_and_enable() switched off."""
        ...  # pragma: no cover

    def remove_network(self, handle: str) -> None:
        ...  # pragma: no cover

    def get_status(self) -> str | None:
        """Return the ESSID the adapter is associated with, if any."""
        ...  # pragma: no cover


class Selector(Protocol):
    """Protocol for the external selection UI.

    Returns the chosen line, or ``None`` when the user cancelled.
    """

    def select(self, lines: list[str], prompt: str | None = None) -> str | None:
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Command runner protocol (subprocess injection seam)
# ---------------------------------------------------------------------------

class CommandRunner(Protocol):
    """Protocol for running external commands.

    Provides an injection seam so callers can substitute a fake runner in
    tests instead of patching ``subprocess`` globally.
    """

    def run(
        self,
        cmd: list[str],
        *,
        capture_output: bool = True,
        text: bool = True,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
        input: str | None = None,
    ) -> subprocess.CompletedProcess[Any]:
        """Run *cmd* and return a CompletedProcess."""
        ...  # pragma: no cover


class SubprocessRunner:
    """Default CommandRunner that delegates to the real ``subprocess`` module."""

    def run(
        self,
        cmd: list[str],
        *,
        capture_output: bool = True,
        text: bool = True,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
        input: str | None = None,
    ) -> subprocess.CompletedProcess[Any]:
        """Run *cmd* via ``subprocess.run``."""
        return subprocess.run(
            cmd,
            capture_output=capture_output,
            text=text,
            timeout=timeout,
            env=env,
            input=input,
        )


def _minimal_env(**extra: str) -> dict[str, str]:
    """Build a minimal environment for subprocess calls.

    Only passes PATH, LC_ALL, HOME and DISPLAY/WAYLAND_DISPLAY (the
    selector needs a display), plus any *extra* variables.
    """
    env = {
        "PATH": os.environ.get("PATH", "/usr/bin:/bin"),
        "LC_ALL": "C",
        "HOME": os.environ.get("HOME", ""),
    }
    for name in ("DISPLAY", "WAYLAND_DISPLAY", "XDG_RUNTIME_DIR"):
        if name in os.environ:
            env[name] = os.environ[name]
    env.update(extra)
    return env


def config_directory() -> str:
    """Return ``$XDG_CONFIG_HOME`` or ``~/.config``."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return xdg
    return os.path.join(os.path.expanduser("~"), ".config")


# ---------------------------------------------------------------------------
# Signal helpers
# ---------------------------------------------------------------------------

def signal_to_bars(signal_dbm: int) -> int:
    """Convert signal strength in dBm to a bar count (0-4)."""
    if signal_dbm >= -50:
        return 4
    if signal_dbm >= -60:
        return 3
    if signal_dbm >= -70:
        return 2
    if signal_dbm >= -80:
        return 1
    return 0


def signal_style(signal_dbm: int) -> str:
    """Return a Rich color name for a signal strength."""
    if signal_dbm >= -50:
        return "green"
    if signal_dbm >= -65:
        return "yellow"
    return "red"
