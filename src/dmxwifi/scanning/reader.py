"""Scan for nearby networks through the control channel.

wpa_supplicant answers ``scan`` immediately and keeps serving its cached
``scan_results`` until the new scan finishes.  The reader therefore takes
a snapshot of the cache before triggering and polls, a bounded number of
times, until the results differ from that snapshot.  If they never do, the
scan found exactly what was cached (possibly nothing) and that is returned.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from dmxwifi.wifi_common import (
    ChannelUnavailable,
    ControlChannel,
    NetworkObservation,
    ScanTimeout,
    ScanUnavailable,
)

logger = logging.getLogger(__name__)


class ScanReader:
    """Trigger a scan and wait for its results."""

    def __init__(
        self,
        channel: ControlChannel,
        *,
        attempts: int = 10,
        interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.channel = channel
        self.attempts = max(1, attempts)
        self.interval = interval
        self._sleep = sleep

    def scan(self) -> list[NetworkObservation]:
        """Return the networks currently in range.

        Raises:
            ScanUnavailable: The control channel cannot be reached.
            ScanTimeout: The daemon stayed busy and never accepted a scan,
                and the cached results did not change meanwhile.
        """
        try:
            return self._scan()
        except ScanUnavailable:
            raise
        except ChannelUnavailable as exc:
            raise ScanUnavailable(str(exc)) from exc

    def _scan(self) -> list[NetworkObservation]:
        before = self.channel.get_scan_results()
        # Only an explicit False means busy.
        accepted = self.channel.trigger_scan() is not False
        latest = before
        for attempt in range(1, self.attempts + 1):
            self._sleep(self.interval)
            latest = self.channel.get_scan_results()
            if latest != before:
                logger.debug(
                    "scan produced %d record(s) after %d poll(s)",
                    len(latest), attempt,
                )
                return latest
            if not accepted:
                accepted = self.channel.trigger_scan() is not False
            logger.debug("scan results unchanged (poll %d/%d)", attempt, self.attempts)

        if not accepted:
            raise ScanTimeout(
                f"Scanner stayed busy for {self.attempts} attempt(s) "
                f"({self.attempts * self.interval:g}s)"
            )
        logger.debug("scan finished with %d unchanged record(s)", len(latest))
        return latest
