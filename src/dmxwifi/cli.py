"""dmxwifi command line.

::

    dmxwifi                      pick a network and join it
    dmxwifi -p SECRET            pick a network and save SECRET for it
    dmxwifi -p SECRET -s ESSID   save SECRET for ESSID without prompting
    dmxwifi -f                   pick a saved network and forget it
    dmxwifi -l                   print the network list and exit

wpa_supplicant must be running with a control socket, e.g.
``wpa_supplicant -B -i wlan0 -c /etc/wpa_supplicant.conf``.
"""

from __future__ import annotations

import argparse
import logging
import sys

from rich.console import Console
from rich.markup import escape

from dmxwifi.config import Config, load_config
from dmxwifi.control.dhclient import request_lease
from dmxwifi.control.wpa_cli import WpaCliChannel
from dmxwifi.controller import AssociationController, Outcome
from dmxwifi.credentials import CredentialStore
from dmxwifi.display.selector import DmenuSelector, escape_identifier
from dmxwifi.display.tables import build_catalog_table
from dmxwifi.scanning.reader import ScanReader
from dmxwifi.wifi_common import (
    ChannelUnavailable,
    ConfigError,
    DmxWifiError,
    ExitCode,
)

_LOGGER = logging.getLogger("dmxwifi")

_OUTCOME_MESSAGES = {
    Outcome.JOINED: "[green]Connected to {target}[/green]",
    Outcome.SAVED: "[green]Saved password for {target}[/green]",
    Outcome.FORGOTTEN: "Forgot {target}",
    Outcome.NOOP: "[yellow]{target} has no saved password; "
                  "run dmxwifi --password SECRET to save one[/yellow]",
}


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="dmxwifi",
        description="Choose a wireless network from a dmenu list.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "-p", "--password",
        metavar="SECRET",
        help="save SECRET as the password of the selected network",
    )
    mode.add_argument(
        "-f", "--forget",
        action="store_true",
        help="forget the selected saved network",
    )
    mode.add_argument(
        "-l", "--list",
        action="store_true",
        help="print scanned and saved networks and exit",
    )
    parser.add_argument(
        "-s", "--ssid",
        help="with --password, save for this ESSID instead of prompting",
    )
    parser.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="TOML configuration file (default: $DMXWIFI_CONFIG or "
             "~/.config/dmxwifi.toml)",
    )
    parser.add_argument(
        "-i", "--interface",
        help="wireless interface (overrides the config file)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="enable debug logging on stderr",
    )
    args = parser.parse_args(argv)
    if args.ssid is not None and args.password is None:
        parser.error("--ssid requires --password")
    if args.ssid == "":
        parser.error("--ssid must not be empty")
    return args


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(name)s: %(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def build_controller(cfg: Config) -> AssociationController:
    """Wire the real collaborators described by *cfg*."""
    channel = WpaCliChannel(
        cfg.interface,
        socket_dir=cfg.wpa_socket,
        wpa_cli=cfg.wpa_cli,
        timeout=cfg.command_timeout,
    )
    reader = ScanReader(channel, attempts=cfg.scan_attempts, interval=cfg.scan_interval)

    on_joined = None
    if cfg.dhclient:
        def on_joined(identifier: str) -> None:
            if not request_lease(cfg.dhclient, cfg.interface, askpass=cfg.askpass):
                _LOGGER.warning("joined %r but no DHCP lease was obtained", identifier)

    return AssociationController(
        CredentialStore(cfg.library),
        reader,
        channel,
        DmenuSelector(cfg.selector),
        prompt=cfg.prompt,
        save_unseen=cfg.save_unseen,
        join_attempts=cfg.join_attempts,
        join_interval=cfg.join_interval,
        on_joined=on_joined,
    )


def run(args: argparse.Namespace, controller: AssociationController, console: Console) -> int:
    """Run the mode chosen by *args* and return the exit status."""
    if args.list:
        catalog = controller.run_list()
        try:
            connected = controller.channel.get_status()
        except ChannelUnavailable:
            connected = None
        console.print(build_catalog_table(catalog, connected=connected))
        return ExitCode.OK

    if args.password is not None:
        outcome = controller.run_save(args.password, args.ssid)
    elif args.forget:
        outcome = controller.run_forget()
    else:
        outcome = controller.run_join()

    message = _OUTCOME_MESSAGES.get(outcome)
    if message and controller.target is not None:
        console.print(message.format(target=escape(escape_identifier(controller.target))))
    return ExitCode.OK


def main(argv: list[str] | None = None) -> None:
    """Entry point for the ``dmxwifi`` console script."""
    args = _parse_args(argv)
    _setup_logging(args.debug)
    console = Console()
    err_console = Console(stderr=True)

    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        err_console.print(f"[red]ERROR:[/red] {escape(str(exc))}")
        sys.exit(exc.exit_code)
    if args.interface:
        cfg.interface = args.interface
    _LOGGER.debug(
        "config: interface=%s library=%s socket=%s selector=%s",
        cfg.interface, cfg.library, cfg.wpa_socket, cfg.selector,
    )

    controller = build_controller(cfg)
    try:
        code = run(args, controller, console)
    except DmxWifiError as exc:
        _LOGGER.debug("failed in state %s", controller.state.value)
        err_console.print(f"[red]ERROR:[/red] {escape(str(exc))}")
        sys.exit(exc.exit_code)
    except KeyboardInterrupt:
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
