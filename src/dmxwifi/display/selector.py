"""Selection list rendering and the external selector (dmenu) adapter.

Each catalog entry becomes one line::

    *  -42 dBm  HomeNetwork
       -71 dBm  CoffeeShop
    *   -- dBm  OldOffice        (saved, out of range)

The marker and signal columns have a fixed width, so the ESSID always
starts at the same offset and a ``*`` inside an ESSID can never be read
as the saved marker.  ESSIDs are escaped so that control characters
cannot break the one-line-per-entry protocol.
"""

from __future__ import annotations

import logging
import os
import subprocess

from dmxwifi.wifi_common import (
    CatalogEntry,
    CommandRunner,
    SelectorUnavailable,
    SubprocessRunner,
    _minimal_env,
)

logger = logging.getLogger(__name__)

_DEFAULT_RUNNER = SubprocessRunner()

SAVED_MARKER = "*"
UNSAVED_MARKER = " "

_ESCAPES = {"\\": "\\\\", "\n": "\\n", "\r": "\\r", "\t": "\\t"}


def escape_identifier(identifier: str) -> str:
    """Escape an ESSID for single-line display.

    Backslash and whitespace control characters get C-style escapes and any
    other non-printable character becomes ``\\xNN``, ``\\uNNNN`` or
    ``\\UNNNNNNNN``.  The mapping is injective, so distinct ESSIDs never
    display the same.
    """
    out = []
    for ch in identifier:
        code = ord(ch)
        if ch in _ESCAPES:
            out.append(_ESCAPES[ch])
        elif ch.isprintable():
            out.append(ch)
        elif code < 0x100:
            out.append(f"\\x{code:02x}")
        elif code < 0x10000:
            out.append(f"\\u{code:04x}")
        else:
            out.append(f"\\U{code:08x}")
    return "".join(out)


def _signal_column(entry: CatalogEntry) -> str:
    signal = entry.signal
    if signal is None:
        text = "--"
    elif -999 <= signal <= 9999:
        text = str(signal)
    else:
        text = "??"
    return f"{text:>4} dBm"


class SelectionPresenter:
    """Turn a catalog into selector lines and map the answer back."""

    def render_entry(self, entry: CatalogEntry) -> str:
        marker = SAVED_MARKER if entry.saved else UNSAVED_MARKER
        return f"{marker} {_signal_column(entry)}  {escape_identifier(entry.identifier)}"

    def render(self, catalog: list[CatalogEntry]) -> list[str]:
        """Return one display line per entry, in catalog order."""
        return [self.render_entry(entry) for entry in catalog]

    def resolve(
        self, selected: str | None, catalog: list[CatalogEntry],
    ) -> CatalogEntry | None:
        """Return the entry whose line is *selected*, or None.

        An empty answer or a line that matches no entry means the user
        cancelled.
        """
        if not selected:
            return None
        for entry in catalog:
            if self.render_entry(entry) == selected:
                return entry
        logger.debug("selection %r matches no catalog entry", selected)
        return None

    def render_saved(self, identifiers: list[str]) -> list[str]:
        """Return display lines for remembered ESSIDs (forget mode)."""
        return [escape_identifier(i) for i in identifiers]

    def resolve_saved(self, selected: str | None, identifiers: list[str]) -> str | None:
        if not selected:
            return None
        for identifier in identifiers:
            if escape_identifier(identifier) == selected:
                return identifier
        return None


class DmenuSelector:
    """Selector that pipes lines through dmenu (or rofi -dmenu, fuzzel, ...).

    The command receives the lines on stdin and prints the chosen line.
    dmenu exits with status 1 when the user presses Escape.
    """

    def __init__(
        self,
        command: list[str] | None = None,
        *,
        runner: CommandRunner | None = None,
    ) -> None:
        self.command = list(command) if command else ["dmenu", "-i"]
        self.runner = runner or _DEFAULT_RUNNER

    def select(self, lines: list[str], prompt: str | None = None) -> str | None:
        cmd = list(self.command)
        if prompt:
            cmd += ["-p", prompt]

        locale = os.environ.get("LC_ALL") or os.environ.get("LANG") or "C.UTF-8"
        try:
            result = self.runner.run(
                cmd, capture_output=True, text=True,
                env=_minimal_env(LC_ALL=locale),
                input="".join(f"{line}\n" for line in lines),
            )
        except OSError as exc:
            raise SelectorUnavailable(f"Error invoking {cmd[0]}: {exc}") from exc

        choice = (result.stdout or "").rstrip("\n")
        if result.returncode != 0 and not choice:
            logger.debug("selector cancelled (exit status %d)", result.returncode)
            return None
        return choice or None
