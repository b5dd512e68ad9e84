"""Merge scan results with saved credentials into the selection catalog."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from dmxwifi.wifi_common import CatalogEntry, NetworkObservation

logger = logging.getLogger(__name__)


def best_observations(
    observations: Iterable[NetworkObservation],
) -> dict[str, NetworkObservation]:
    """Collapse duplicate ESSIDs, keeping the strongest record of each.

    Hidden networks (empty ESSID) are dropped: they cannot be joined by name.
    """
    best: dict[str, NetworkObservation] = {}
    for obs in observations:
        if not obs.identifier:
            logger.debug("skipping hidden network %s", obs.bssid or "?")
            continue
        current = best.get(obs.identifier)
        if current is None or obs.signal > current.signal:
            best[obs.identifier] = obs
    return best


def _sort_key(entry: CatalogEntry) -> tuple:
    # Saved first, then in-range before out-of-range, strongest first, then name.
    signal = entry.signal
    return (
        not entry.saved,
        signal is None,
        -signal if signal is not None else 0,
        entry.identifier,
    )


def merge(
    observations: Iterable[NetworkObservation],
    credentials: Mapping[str, str],
) -> list[CatalogEntry]:
    """Build the ordered, de-duplicated catalog.

    Every ESSID that was observed or has a saved secret appears exactly
    once.  Remembered networks that are out of range are listed with no
    observation.
    """
    seen = best_observations(observations)
    identifiers = set(seen) | {i for i in credentials if i}

    entries = [
        CatalogEntry(
            identifier=identifier,
            saved=identifier in credentials,
            observation=seen.get(identifier),
        )
        for identifier in identifiers
    ]
    entries.sort(key=_sort_key)
    for rank, entry in enumerate(entries):
        entry.rank = rank
    return entries
