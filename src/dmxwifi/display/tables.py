"""Rich table for printing the network catalog (``dmxwifi --list``).

Can be used standalone to check rendering::

    python -m dmxwifi.display.tables          # render a demo table
"""

from __future__ import annotations

from rich.markup import escape
from rich.table import Table

from dmxwifi.display.selector import escape_identifier
from dmxwifi.wifi_common import (
    CatalogEntry,
    NetworkObservation,
    signal_style,
    signal_to_bars,
)


def _bar_string(bars: int) -> str:
    """Build a signal-bar string like '▂▄▆█'."""
    chars = ["▂", "▄", "▆", "█"]
    return "".join(chars[i] if i < bars else " " for i in range(4))


def build_catalog_table(
    catalog: list[CatalogEntry],
    connected: str | None = None,
) -> Table:
    """Build a Rich Table for the merged catalog.

    Args:
        catalog: Entries in catalog order.
        connected: ESSID the adapter is associated with, highlighted bold.
    """
    in_range = sum(1 for entry in catalog if entry.in_range)
    saved = sum(1 for entry in catalog if entry.saved)
    table = Table(
        title="dmxwifi",
        title_style="bold cyan",
        caption=f"{in_range} in range, {saved} saved",
        caption_style="grey50",
        expand=True,
        show_lines=False,
        padding=(0, 1),
    )
    table.add_column("#", style="grey50", width=3, justify="right")
    table.add_column("Con", justify="center", width=3)
    table.add_column("Key", justify="center", width=3)
    table.add_column("SSID", style="white", min_width=15, max_width=32)
    table.add_column("dBm", justify="right", width=5)
    table.add_column("Sig", width=5)
    table.add_column("MHz", justify="right", width=5)
    table.add_column("Security", min_width=8)

    for entry in catalog:
        is_connected = connected is not None and entry.identifier == connected
        obs = entry.observation
        if obs is None:
            signal_cells = ["[grey50]--[/grey50]", "", "", "[grey50]out of range[/grey50]"]
        else:
            color = signal_style(obs.signal)
            signal_cells = [
                f"[{color}]{obs.signal}[/{color}]",
                f"[{color}]{_bar_string(signal_to_bars(obs.signal))}[/{color}]",
                str(obs.frequency) if obs.frequency else "",
                "[green]secured[/green]" if obs.secured else "[red]open[/red]",
            ]
        table.add_row(
            str(entry.rank + 1),
            "[green]●[/green]" if is_connected else "",
            "[green]*[/green]" if entry.saved else "",
            escape(escape_identifier(entry.identifier)),
            *signal_cells,
            style="bold" if is_connected else "",
        )

    return table


# ---------------------------------------------------------------------------
# Standalone CLI (demo)
# ---------------------------------------------------------------------------

def main() -> None:
    """Render a demo table with sample data for visual testing."""
    from rich.console import Console

    from dmxwifi.catalog import merge

    observations = [
        NetworkObservation("HomeNet", signal=-45, secured=True, frequency=2437),
        NetworkObservation("Office", signal=-65, secured=True, frequency=5180),
        NetworkObservation("CoffeeShop", signal=-80, frequency=2412),
    ]
    catalog = merge(observations, {"HomeNet": "x", "Cabin": "y"})
    Console().print(build_catalog_table(catalog, connected="HomeNet"))


if __name__ == "__main__":
    main()
