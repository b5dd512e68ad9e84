"""Association workflow: scan, present, then join, save or forget.

One controller drives one invocation::

    IDLE -> SCANNING -> PRESENTING -> JOINING | SAVING | FORGETTING -> DONE

Any error moves it to FAILED and propagates to the caller unchanged.
A cancelled selection ends in DONE with no side effects.
"""

from __future__ import annotations

import enum
import logging
import time
from typing import Callable

from dmxwifi.catalog import merge
from dmxwifi.credentials import CredentialStore
from dmxwifi.display.selector import SelectionPresenter, escape_identifier
from dmxwifi.scanning.reader import ScanReader
from dmxwifi.wifi_common import (
    AssociationRejected,
    CatalogEntry,
    ChannelUnavailable,
    ControlChannel,
    DmxWifiError,
    NetworkNotInRange,
    Selector,
)

logger = logging.getLogger(__name__)


class State(enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PRESENTING = "presenting"
    JOINING = "joining"
    SAVING = "saving"
    FORGETTING = "forgetting"
    DONE = "done"
    FAILED = "failed"


class Outcome(enum.Enum):
    JOINED = "joined"
    SAVED = "saved"
    FORGOTTEN = "forgotten"
    NOOP = "noop"
    CANCELLED = "cancelled"


class AssociationController:
    """Run one list/join, save-credential or forget cycle."""

    def __init__(
        self,
        store: CredentialStore,
        reader: ScanReader,
        channel: ControlChannel,
        selector: Selector,
        presenter: SelectionPresenter | None = None,
        *,
        prompt: str | None = None,
        save_unseen: bool = False,
        join_attempts: int = 15,
        join_interval: float = 1.0,
        on_joined: Callable[[str], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.reader = reader
        self.channel = channel
        self.selector = selector
        self.presenter = presenter or SelectionPresenter()
        self.prompt = prompt
        self.save_unseen = save_unseen
        self.join_attempts = max(1, join_attempts)
        self.join_interval = join_interval
        self.on_joined = on_joined
        self._sleep = sleep
        self.state = State.IDLE
        self.failure: DmxWifiError | None = None
        self.target: str | None = None

    def _enter(self, state: State) -> None:
        logger.debug("state %s -> %s", self.state.value, state.value)
        self.state = state

    def _fail(self, exc: DmxWifiError) -> None:
        self.failure = exc
        self._enter(State.FAILED)

    def _finish(self, outcome: Outcome) -> Outcome:
        self._enter(State.DONE)
        logger.debug("finished: %s", outcome.value)
        return outcome

    # -----------------------------------------------------------------------
    # Building blocks
    # -----------------------------------------------------------------------

    def build_catalog(self) -> tuple[list[CatalogEntry], dict[str, str]]:
        """Scan, load saved secrets and merge them."""
        self._enter(State.SCANNING)
        observations = self.reader.scan()
        credentials = self.store.load()
        catalog = merge(observations, credentials)
        logger.debug(
            "catalog: %d entr%s from %d scan record(s) and %d saved network(s)",
            len(catalog), "y" if len(catalog) == 1 else "ies",
            len(observations), len(credentials),
        )
        return catalog, credentials

    def _present(self, catalog: list[CatalogEntry]) -> CatalogEntry | None:
        self._enter(State.PRESENTING)
        choice = self.selector.select(self.presenter.render(catalog), self.prompt)
        entry = self.presenter.resolve(choice, catalog)
        self.target = entry.identifier if entry else None
        return entry

    def join(self, identifier: str, secret: str) -> None:
        """Associate with *identifier* and wait for the daemon to confirm.

        The daemon's existing network block for the ESSID is reused when
        there is one.  If any step fails, or association is not confirmed
        within the polling window, a block added here is removed again and
        the networks enabled before the attempt are re-enabled.  A missing
        confirmation raises :class:`AssociationRejected`; it is never
        retried.
        """
        self._enter(State.JOINING)
        handle = self.channel.find_network(identifier)
        added = handle is None
        if handle is None:
            handle = self.channel.add_network(identifier)
        logger.debug("joining %r using network %s", identifier, handle)

        selected = False
        try:
            self.channel.set_secret(handle, secret)
            selected = True
            self.channel.select_and_enable(handle)
            self._await_association(identifier)
        except DmxWifiError:
            self._roll_back(handle, added, selected)
            raise

        logger.info("associated with %r", identifier)
        if self.on_joined is not None:
            self.on_joined(identifier)

    def _await_association(self, identifier: str) -> None:
        for attempt in range(1, self.join_attempts + 1):
            self._sleep(self.join_interval)
            connected = self.channel.get_status()
            if connected == identifier:
                return
            logger.debug(
                "not associated yet (poll %d/%d, status=%r)",
                attempt, self.join_attempts, connected,
            )
        raise AssociationRejected(
            f"Association with '{escape_identifier(identifier)}' was not "
            "confirmed; the saved password may be wrong"
        )

    def _roll_back(self, handle: str, added: bool, selected: bool) -> None:
        """Undo a failed join without masking the original error."""
        if added:
            try:
                self.channel.remove_network(handle)
            except ChannelUnavailable as exc:
                logger.warning("could not remove network %s: %s", handle, exc)
        if selected:
            try:
                self.channel.restore_selection()
            except ChannelUnavailable as exc:
                logger.warning("could not re-enable previous networks: %s", exc)

    # -----------------------------------------------------------------------
    # Modes
    # -----------------------------------------------------------------------

    def run_join(self) -> Outcome:
        """List networks and join the selected saved one."""
        try:
            catalog, credentials = self.build_catalog()
            entry = self._present(catalog)
            if entry is None:
                return self._finish(Outcome.CANCELLED)
            if not entry.saved:
                logger.info(
                    "'%s' has no saved password; use --password to save one",
                    entry.identifier,
                )
                return self._finish(Outcome.NOOP)
            if not entry.in_range:
                raise NetworkNotInRange(
                    f"'{escape_identifier(entry.identifier)}' is not in range"
                )
            self.join(entry.identifier, credentials[entry.identifier])
            return self._finish(Outcome.JOINED)
        except DmxWifiError as exc:
            self._fail(exc)
            raise

    def run_save(self, secret: str, identifier: str | None = None) -> Outcome:
        """Save *secret* for the selected (or named) network."""
        try:
            catalog, _ = self.build_catalog()
            if identifier is None:
                entry = self._present(catalog)
                if entry is None:
                    return self._finish(Outcome.CANCELLED)
                target = entry.identifier
                in_range = entry.in_range
            else:
                target = identifier
                in_range = any(e.identifier == target and e.in_range for e in catalog)
                if not in_range and not self.save_unseen:
                    raise NetworkNotInRange(
                        f"'{escape_identifier(target)}' is not in range"
                    )
            if not in_range:
                logger.info("saving password for '%s', which is not in range", target)

            self.target = target
            self._enter(State.SAVING)
            self.store.upsert(target, secret)
            logger.info("saved password for '%s'", target)
            return self._finish(Outcome.SAVED)
        except DmxWifiError as exc:
            self._fail(exc)
            raise

    def run_forget(self) -> Outcome:
        """Remove the selected network from the library.  No scan needed."""
        try:
            identifiers = sorted(self.store.load())
            self._enter(State.PRESENTING)
            choice = self.selector.select(
                self.presenter.render_saved(identifiers), self.prompt,
            )
            identifier = self.presenter.resolve_saved(choice, identifiers)
            if identifier is None:
                return self._finish(Outcome.CANCELLED)

            self.target = identifier
            self._enter(State.FORGETTING)
            self.store.delete(identifier)
            logger.info("forgot '%s'", identifier)
            return self._finish(Outcome.FORGOTTEN)
        except DmxWifiError as exc:
            self._fail(exc)
            raise

    def run_list(self) -> list[CatalogEntry]:
        """Return the merged catalog without prompting."""
        try:
            catalog, _ = self.build_catalog()
        except DmxWifiError as exc:
            self._fail(exc)
            raise
        self._enter(State.DONE)
        return catalog
