"""wpa_supplicant control channel via ``wpa_cli``.

Every operation is a single non-interactive ``wpa_cli`` invocation::

    wpa_cli -i <interface> -p <socket dir> <command> [args...]

It can also be run standalone to dump the daemon's current view::

    python -m dmxwifi.control.wpa_cli                 # scan results
    python -m dmxwifi.control.wpa_cli --status        # associated ESSID
"""

from __future__ import annotations

import argparse
import logging
import re
import subprocess
import sys

from dmxwifi.display.selector import escape_identifier
from dmxwifi.wifi_common import (
    MIN_SIGNAL,
    ChannelUnavailable,
    CommandRunner,
    NetworkObservation,
    SubprocessRunner,
    _minimal_env,
)

logger = logging.getLogger(__name__)

_DEFAULT_RUNNER = SubprocessRunner()

# wpa_cli prints this (and exits non-zero) when the daemon socket is absent.
_UNREACHABLE_MARKERS = ("Failed to connect to", "Could not connect to")

_SECURED_FLAG_RE = re.compile(r"WPA|RSN|WEP|SAE|PSK|EAP")
_HEX_PSK_RE = re.compile(r"^[0-9a-fA-F]{64}$")

# wpa_supplicant prints SSIDs with printf_encode(): \\, \", \n, \r, \t, \e,
# \xNN for other bytes outside 0x20-0x7e.
_SSID_ESCAPE_RE = re.compile(r"\\(x[0-9a-fA-F]{1,2}|[0-7]{1,3}|.)", re.DOTALL)
_SSID_SIMPLE_ESCAPES = {
    "\\": b"\\", '"': b'"', "n": b"\n", "r": b"\r", "t": b"\t", "e": b"\x1b",
}


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------

def ssid_to_bytes(identifier: str) -> bytes:
    """Return the raw SSID bytes for an identifier.

    Identifiers are the SSID bytes decoded as UTF-8 with
    ``surrogateescape``, so bytes that are not valid UTF-8 survive.
    """
    return identifier.encode("utf-8", "surrogateescape")


def _decode_wpa_ssid(text: str) -> str:
    """Undo wpa_supplicant's escaping of an SSID field."""
    raw = bytearray()
    pos = 0
    for match in _SSID_ESCAPE_RE.finditer(text):
        raw += ssid_to_bytes(text[pos:match.start()])
        seq = match.group(1)
        if seq[0] == "x" and len(seq) > 1:
            raw.append(int(seq[1:], 16))
        elif seq[0] in "01234567":
            raw.append(int(seq, 8) & 0xFF)
        else:
            # Unknown escapes are dropped, as printf_decode() does.
            raw += _SSID_SIMPLE_ESCAPES.get(seq, b"")
        pos = match.end()
    raw += ssid_to_bytes(text[pos:])
    return bytes(raw).decode("utf-8", "surrogateescape")


def _is_secured(flags: str) -> bool:
    """Return True if a scan ``flags`` field advertises any security."""
    return bool(_SECURED_FLAG_RE.search(flags.upper()))


def parse_scan_results(output: str) -> list[NetworkObservation]:
    """Parse ``wpa_cli scan_results`` output.

    Each record is ``bssid \\t frequency \\t signal \\t flags \\t ssid``.
    The header line and short lines are skipped.  A record whose signal
    cannot be parsed is kept with :data:`MIN_SIGNAL`.
    """
    observations: list[NetworkObservation] = []

    for line in output.splitlines():
        fields = line.split("\t", 4)
        if len(fields) < 5:
            continue
        bssid, freq, level, flags, ssid = fields

        try:
            signal = int(level.strip())
        except ValueError:
            logger.debug("unparseable signal %r for %s", level, bssid)
            signal = MIN_SIGNAL

        try:
            frequency = int(freq.strip())
        except ValueError:
            frequency = 0

        observations.append(NetworkObservation(
            identifier=_decode_wpa_ssid(ssid),
            signal=signal,
            secured=_is_secured(flags),
            bssid=bssid.strip().lower(),
            frequency=frequency,
        ))

    return observations


def parse_list_networks(output: str) -> dict[str, str]:
    """Parse ``wpa_cli list_networks`` output into ``{ssid: network id}``.

    The first network id listed for an ESSID wins.
    """
    networks: dict[str, str] = {}
    for line in output.splitlines():
        fields = line.split("\t")
        if len(fields) < 2 or not fields[0].strip().isdigit():
            continue
        networks.setdefault(_decode_wpa_ssid(fields[1]), fields[0].strip())
    return networks


def parse_enabled_networks(output: str) -> list[str]:
    """Return the ids of ``list_networks`` entries not flagged ``[DISABLED]``."""
    enabled: list[str] = []
    for line in output.splitlines():
        fields = line.split("\t")
        if len(fields) < 2 or not fields[0].strip().isdigit():
            continue
        flags = fields[3] if len(fields) > 3 else ""
        if "[DISABLED]" not in flags:
            enabled.append(fields[0].strip())
    return enabled


def parse_status(output: str) -> dict[str, str]:
    """Parse ``wpa_cli status`` ``key=value`` lines."""
    status: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            status[key.strip()] = value
    return status


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------

class WpaCliChannel:
    """ControlChannel implementation that shells out to ``wpa_cli``."""

    def __init__(
        self,
        interface: str = "wlan0",
        *,
        socket_dir: str = "/var/run/wpa_supplicant",
        wpa_cli: str = "wpa_cli",
        timeout: float = 10.0,
        runner: CommandRunner | None = None,
    ) -> None:
        self.interface = interface
        self.socket_dir = socket_dir
        self.wpa_cli = wpa_cli
        self.timeout = timeout
        self.runner = runner or _DEFAULT_RUNNER
        self._previously_enabled: list[str] = []

    def _command(self, *args: str) -> str:
        """Run one wpa_cli command and return its stdout.

        Raises :class:`ChannelUnavailable` if wpa_cli is missing, hangs,
        exits non-zero or cannot reach the daemon.
        """
        cmd = [self.wpa_cli, "-i", self.interface, "-p", self.socket_dir, *args]
        try:
            result = self.runner.run(
                cmd, capture_output=True, text=True,
                timeout=self.timeout, env=_minimal_env(),
            )
        except subprocess.TimeoutExpired as exc:
            raise ChannelUnavailable(
                f"wpa_cli {args[0]} timed out after {self.timeout}s"
            ) from exc
        except OSError as exc:
            raise ChannelUnavailable(f"Error invoking {self.wpa_cli}: {exc}") from exc

        output = result.stdout or ""
        if result.returncode != 0 or any(m in output for m in _UNREACHABLE_MARKERS):
            detail = (result.stderr or output).strip() or f"exit status {result.returncode}"
            raise ChannelUnavailable(
                f"wpa_supplicant on {self.interface} is not reachable: {detail}"
            )
        return output

    def _ok(self, *args: str) -> None:
        """Run a command that must answer ``OK``."""
        reply = self._command(*args).strip()
        if reply != "OK":
            raise ChannelUnavailable(f"wpa_cli {args[0]} failed: {reply or 'no reply'}")

    def trigger_scan(self) -> bool:
        """Request a scan.  Returns False if one is already running."""
        reply = self._command("scan").strip()
        if reply not in ("OK", "FAIL-BUSY"):
            raise ChannelUnavailable(f"wpa_cli scan failed: {reply or 'no reply'}")
        logger.debug("scan requested on %s (%s)", self.interface, reply)
        return reply == "OK"

    def get_scan_results(self) -> list[NetworkObservation]:
        return parse_scan_results(self._command("scan_results"))

    def find_network(self, identifier: str) -> str | None:
        return parse_list_networks(self._command("list_networks")).get(identifier)

    def add_network(self, identifier: str) -> str:
        handle = self._command("add_network").strip().splitlines()[-1:]
        if not handle or not handle[0].isdigit():
            raise ChannelUnavailable(f"wpa_cli add_network returned {handle!r}")
        network_id = handle[0]
        # Hex form sidesteps quoting for arbitrary ESSIDs.
        self._ok("set_network", network_id, "ssid", ssid_to_bytes(identifier).hex())
        logger.debug("added network %s for %r", network_id, identifier)
        return network_id

    def set_secret(self, handle: str, secret: str) -> None:
        if not secret:
            self._ok("set_network", handle, "key_mgmt", "NONE")
            return
        # A reused block may have been configured as an open network.
        self._ok("set_network", handle, "key_mgmt", "WPA-PSK")
        if _HEX_PSK_RE.match(secret):
            self._ok("set_network", handle, "psk", secret)
        else:
            self._ok("set_network", handle, "psk", f'"{secret}"')

    def select_and_enable(self, handle: str) -> None:
        """Make *handle* the only enabled network.

        ``select_network`` disables every other block; the ones that were
        enabled beforehand are remembered for :meth:`restore_selection`.
        """
        self._previously_enabled = parse_enabled_networks(self._command("list_networks"))
        self._ok("select_network", handle)
        self._ok("enable_network", handle)

    def restore_selection(self) -> None:
        """Re-enable the networks :meth:`select_and_enable` disabled."""
        for network_id in self._previously_enabled:
            try:
                self._ok("enable_network", network_id)
            except ChannelUnavailable as exc:
                # The block may have been removed in the meantime.
                logger.debug("could not re-enable network %s: %s", network_id, exc)
        self._previously_enabled = []

    def remove_network(self, handle: str) -> None:
        self._ok("remove_network", handle)

    def get_status(self) -> str | None:
        status = parse_status(self._command("status"))
        if status.get("wpa_state") == "COMPLETED" and "ssid" in status:
            return _decode_wpa_ssid(status["ssid"])
        return None


# ---------------------------------------------------------------------------
# Standalone CLI
# ---------------------------------------------------------------------------

def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for standalone invocation."""
    parser = argparse.ArgumentParser(
        description="Query wpa_supplicant through wpa_cli.",
    )
    parser.add_argument(
        "-i", "--interface", default="wlan0",
        help="wireless interface (default: wlan0)",
    )
    parser.add_argument(
        "-p", "--socket", default="/var/run/wpa_supplicant",
        help="wpa_supplicant control socket directory",
    )
    parser.add_argument(
        "--status", action="store_true",
        help="print the associated ESSID instead of scan results",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Print cached scan results (or status) and exit."""
    args = _parse_args(argv)
    channel = WpaCliChannel(args.interface, socket_dir=args.socket)
    try:
        if args.status:
            print(channel.get_status() or "(not associated)")
            return
        observations = channel.get_scan_results()
    except ChannelUnavailable as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    for obs in sorted(observations, key=lambda o: o.signal, reverse=True):
        lock = "secured" if obs.secured else "open"
        name = escape_identifier(obs.identifier)
        print(f"{obs.bssid:<18} {obs.frequency:>5} {obs.signal:>5} {lock:<8} {name}")
    print(f"\n{len(observations)} network(s) found.")


if __name__ == "__main__":
    main()
