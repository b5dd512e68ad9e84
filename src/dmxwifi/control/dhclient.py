"""DHCP lease request after a successful association.

Runs ``sudo -A <dhclient> <interface>``.  ``SUDO_ASKPASS`` is set when an
askpass helper is configured so sudo can prompt without a terminal.
"""

from __future__ import annotations

import logging
import subprocess

from dmxwifi.wifi_common import CommandRunner, SubprocessRunner, _minimal_env

logger = logging.getLogger(__name__)

_DEFAULT_RUNNER = SubprocessRunner()


def request_lease(
    dhclient: str,
    interface: str,
    *,
    askpass: str | None = None,
    timeout: float = 60.0,
    runner: CommandRunner | None = None,
) -> bool:
    """Ask dhclient for an address on *interface*.

    Returns True if dhclient exited successfully, False otherwise.
    """
    runner = runner or _DEFAULT_RUNNER
    extra = {"SUDO_ASKPASS": askpass} if askpass else {}
    cmd = ["sudo", "-A", dhclient, interface]

    try:
        result = runner.run(
            cmd, capture_output=True, text=True,
            timeout=timeout, env=_minimal_env(**extra),
        )
    except (subprocess.TimeoutExpired, OSError) as exc:
        logger.warning("error invoking %s as root: %s", dhclient, exc)
        return False

    if result.returncode != 0:
        logger.warning(
            "%s exited with status %d: %s",
            dhclient, result.returncode, (result.stderr or "").strip(),
        )
        return False
    return True
