"""Tests for dmxwifi.controller — the scan/present/join/save workflow.

The control channel and the selector are replaced by small in-memory fakes
that implement the same protocols.
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest

from dmxwifi.controller import AssociationController, Outcome, State
from dmxwifi.credentials import CredentialStore
from dmxwifi.scanning.reader import ScanReader
from dmxwifi.wifi_common import (
    AssociationRejected,
    ChannelUnavailable,
    NetworkNotInRange,
    NetworkObservation,
    ScanTimeout,
    ScanUnavailable,
    SelectorUnavailable,
    StoreUnreadable,
)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeChannel:
    """In-memory control channel.

    ``accepts`` maps ESSID -> the secret the access point accepts.  Secrets
    in ``refuse`` are rejected by set_secret, the way wpa_supplicant answers
    FAIL for a malformed passphrase.
    """

    def __init__(self, observations=(), accepts=None, reachable=True, known=None,
                 busy=False, refuse=()):
        self.observations = list(observations)
        self.accepts = accepts or {}
        self.reachable = reachable
        self.busy = busy
        self.refuse = set(refuse)
        self.networks: dict[str, dict[str, str]] = {
            handle: {"ssid": ssid} for ssid, handle in (known or {}).items()
        }
        self.enabled: set[str] = set(self.networks)
        self._enabled_before: set[str] = set()
        self.connected: str | None = None
        self.calls: list[tuple] = []

    def _check(self, name, *args):
        self.calls.append((name, *args))
        if not self.reachable:
            raise ChannelUnavailable("wpa_supplicant is not running")

    def trigger_scan(self):
        self._check("trigger_scan")
        return not self.busy

    def get_scan_results(self):
        self._check("get_scan_results")
        return list(self.observations)

    def find_network(self, identifier):
        self._check("find_network", identifier)
        for handle, net in self.networks.items():
            if net["ssid"] == identifier:
                return handle
        return None

    def add_network(self, identifier):
        self._check("add_network", identifier)
        handle = str(len(self.networks) + 10)
        self.networks[handle] = {"ssid": identifier}
        return handle

    def set_secret(self, handle, secret):
        self._check("set_secret", handle, secret)
        if secret in self.refuse:
            raise ChannelUnavailable("wpa_cli set_network failed: FAIL")
        self.networks[handle]["secret"] = secret

    def select_and_enable(self, handle):
        self._check("select_and_enable", handle)
        self._enabled_before = set(self.enabled)
        self.enabled = {handle}
        net = self.networks[handle]
        if self.accepts.get(net["ssid"]) == net.get("secret"):
            self.connected = net["ssid"]

    def restore_selection(self):
        self._check("restore_selection")
        self.enabled |= self._enabled_before & set(self.networks)

    def remove_network(self, handle):
        self._check("remove_network", handle)
        del self.networks[handle]
        self.enabled.discard(handle)

    def get_status(self):
        self._check("get_status")
        return self.connected


class FakeSelector:
    """Selector that picks the line containing *pick* (or cancels)."""

    def __init__(self, pick=None):
        self.pick = pick
        self.shown: list[str] | None = None
        self.prompt = None

    def select(self, lines, prompt=None):
        self.shown = list(lines)
        self.prompt = prompt
        if self.pick is None:
            return None
        for line in lines:
            if line.endswith(f"  {self.pick}") or line == self.pick:
                return line
        return self.pick


HOME = NetworkObservation("Home", signal=-40, secured=True)
CAFE = NetworkObservation("Cafe", signal=-70, secured=False)
OFFICE = NetworkObservation("Office", signal=-55, secured=True)


@pytest.fixture
def store(tmp_path):
    return CredentialStore(str(tmp_path / "lib.csv"))


def make_controller(store, channel, selector, **kwargs):
    reader = ScanReader(channel, attempts=3, interval=0, sleep=lambda s: None)
    kwargs.setdefault("join_attempts", 3)
    return AssociationController(
        store, reader, channel, selector,
        join_interval=0, sleep=lambda s: None, **kwargs,
    )


# ---------------------------------------------------------------------------
# List / join mode
# ---------------------------------------------------------------------------

class TestRunJoin:
    def test_joins_saved_network(self, store):
        store.save({"Home": "pw1"})
        channel = FakeChannel([HOME, CAFE], accepts={"Home": "pw1"})
        ctl = make_controller(store, channel, FakeSelector("Home"))
        assert ctl.run_join() is Outcome.JOINED
        assert channel.connected == "Home"
        assert ctl.state is State.DONE
        assert ctl.target == "Home"

    def test_presents_catalog_in_order(self, store):
        store.save({"Home": "pw1"})
        selector = FakeSelector(None)
        ctl = make_controller(store, FakeChannel([CAFE, HOME]), selector, prompt="wifi")
        ctl.run_join()
        assert selector.shown == ["*  -40 dBm  Home", "   -70 dBm  Cafe"]
        assert selector.prompt == "wifi"

    def test_cancel_has_no_side_effects(self, store):
        store.save({"Home": "pw1"})
        channel = FakeChannel([HOME], accepts={"Home": "pw1"})
        ctl = make_controller(store, channel, FakeSelector(None))
        assert ctl.run_join() is Outcome.CANCELLED
        assert channel.connected is None
        assert not any(c[0] == "add_network" for c in channel.calls)
        assert ctl.state is State.DONE

    def test_unsaved_selection_is_noop(self, store):
        store.save({"Home": "pw1"})
        channel = FakeChannel([HOME, CAFE])
        ctl = make_controller(store, channel, FakeSelector("Cafe"))
        assert ctl.run_join() is Outcome.NOOP
        assert channel.connected is None
        called = {c[0] for c in channel.calls}
        assert called.isdisjoint({"add_network", "set_secret", "select_and_enable"})
        assert ctl.state is State.DONE

    def test_saved_out_of_range_raises(self, store):
        store.save({"Cabin": "pw"})
        channel = FakeChannel([HOME])
        ctl = make_controller(store, channel, FakeSelector("Cabin"))
        with pytest.raises(NetworkNotInRange):
            ctl.run_join()
        assert ctl.state is State.FAILED
        assert isinstance(ctl.failure, NetworkNotInRange)

    def test_wrong_secret_is_rejected_not_retried(self, store):
        store.save({"Home": "stale"})
        channel = FakeChannel([HOME], accepts={"Home": "fresh"})
        ctl = make_controller(store, channel, FakeSelector("Home"))
        with pytest.raises(AssociationRejected):
            ctl.run_join()
        assert [c[0] for c in channel.calls].count("select_and_enable") == 1
        assert [c[0] for c in channel.calls].count("get_status") == 3
        assert ctl.state is State.FAILED

    def test_rejected_added_network_is_removed(self, store):
        store.save({"Home": "stale"})
        channel = FakeChannel([HOME], accepts={"Home": "fresh"})
        ctl = make_controller(store, channel, FakeSelector("Home"))
        with pytest.raises(AssociationRejected):
            ctl.run_join()
        assert channel.networks == {}

    def test_rejected_existing_network_is_kept(self, store):
        store.save({"Home": "stale"})
        channel = FakeChannel([HOME], accepts={"Home": "fresh"}, known={"Home": "0"})
        ctl = make_controller(store, channel, FakeSelector("Home"))
        with pytest.raises(AssociationRejected):
            ctl.run_join()
        assert "0" in channel.networks
        assert not any(c[0] == "remove_network" for c in channel.calls)

    def test_reuses_existing_daemon_network(self, store):
        store.save({"Home": "pw1"})
        channel = FakeChannel([HOME], accepts={"Home": "pw1"}, known={"Home": "0"})
        ctl = make_controller(store, channel, FakeSelector("Home"))
        assert ctl.run_join() is Outcome.JOINED
        assert not any(c[0] == "add_network" for c in channel.calls)
        assert ("set_secret", "0", "pw1") in channel.calls

    def test_refused_secret_removes_added_network(self, store):
        store.save({"Home": "short"})
        channel = FakeChannel([HOME], refuse={"short"})
        ctl = make_controller(store, channel, FakeSelector("Home"))
        with pytest.raises(ChannelUnavailable):
            ctl.run_join()
        assert channel.networks == {}
        assert not any(c[0] == "select_and_enable" for c in channel.calls)
        assert ctl.state is State.FAILED

    def test_set_secret_failure_removes_added_handle(self, store):
        store.save({"Home": "pw1"})
        channel = MagicMock()
        channel.find_network.return_value = None
        channel.add_network.return_value = "7"
        channel.set_secret.side_effect = ChannelUnavailable("wpa_cli set_network failed: FAIL")
        reader = MagicMock()
        reader.scan.return_value = [HOME]
        ctl = AssociationController(store, reader, channel, FakeSelector("Home"),
                                    join_interval=0, sleep=lambda s: None)
        with pytest.raises(ChannelUnavailable):
            ctl.run_join()
        channel.remove_network.assert_called_once_with("7")
        channel.select_and_enable.assert_not_called()
        channel.restore_selection.assert_not_called()

    def test_refused_secret_keeps_existing_network(self, store):
        store.save({"Home": "short"})
        channel = FakeChannel([HOME], known={"Home": "0"}, refuse={"short"})
        ctl = make_controller(store, channel, FakeSelector("Home"))
        with pytest.raises(ChannelUnavailable):
            ctl.run_join()
        assert "0" in channel.networks

    def test_rejection_reenables_previous_networks(self, store):
        store.save({"Home": "stale"})
        channel = FakeChannel([HOME], accepts={"Home": "fresh"}, known={"Office": "3"})
        ctl = make_controller(store, channel, FakeSelector("Home"))
        with pytest.raises(AssociationRejected):
            ctl.run_join()
        assert ("restore_selection",) in channel.calls
        assert channel.enabled == {"3"}

    def test_rollback_failure_does_not_mask_rejection(self, store, caplog):
        store.save({"Home": "stale"})
        channel = FakeChannel([HOME], accepts={"Home": "fresh"})
        channel.remove_network = MagicMock(side_effect=ChannelUnavailable("gone"))
        ctl = make_controller(store, channel, FakeSelector("Home"))
        with caplog.at_level(logging.WARNING, logger="dmxwifi.controller"):
            with pytest.raises(AssociationRejected):
                ctl.run_join()
        assert "could not remove network" in caplog.text

    def test_on_joined_called(self, store):
        store.save({"Home": "pw1"})
        on_joined = MagicMock()
        channel = FakeChannel([HOME], accepts={"Home": "pw1"})
        ctl = make_controller(store, channel, FakeSelector("Home"), on_joined=on_joined)
        ctl.run_join()
        on_joined.assert_called_once_with("Home")

    def test_on_joined_not_called_on_rejection(self, store):
        store.save({"Home": "bad"})
        on_joined = MagicMock()
        channel = FakeChannel([HOME], accepts={"Home": "pw1"})
        ctl = make_controller(store, channel, FakeSelector("Home"), on_joined=on_joined)
        with pytest.raises(AssociationRejected):
            ctl.run_join()
        on_joined.assert_not_called()

    def test_channel_unreachable_is_scan_unavailable(self, store):
        store.save({"Home": "pw1"})
        before = open(store.path, "rb").read()
        ctl = make_controller(store, FakeChannel(reachable=False), FakeSelector("Home"))
        with pytest.raises(ScanUnavailable):
            ctl.run_join()
        assert open(store.path, "rb").read() == before
        assert ctl.state is State.FAILED

    def test_scan_timeout(self, store):
        ctl = make_controller(store, FakeChannel([], busy=True), FakeSelector("Home"))
        with pytest.raises(ScanTimeout):
            ctl.run_join()

    def test_unreadable_store(self, store):
        with open(store.path, "w") as f:
            f.write("no-comma-here\n")
        ctl = make_controller(store, FakeChannel([HOME]), FakeSelector("Home"))
        with pytest.raises(StoreUnreadable):
            ctl.run_join()

    def test_selector_unavailable_propagates(self, store):
        selector = MagicMock()
        selector.select.side_effect = SelectorUnavailable("no dmenu")
        ctl = make_controller(store, FakeChannel([HOME]), selector)
        with pytest.raises(SelectorUnavailable):
            ctl.run_join()
        assert ctl.state is State.FAILED


# ---------------------------------------------------------------------------
# Save-credential mode
# ---------------------------------------------------------------------------

class TestRunSave:
    def test_saves_selected_network(self, store):
        ctl = make_controller(store, FakeChannel([HOME, CAFE]), FakeSelector("Cafe"))
        assert ctl.run_save("latte") is Outcome.SAVED
        assert store.load() == {"Cafe": "latte"}
        assert ctl.state is State.DONE
        assert ctl.target == "Cafe"

    def test_overwrites_saved_network(self, store):
        store.save({"Home": "old"})
        ctl = make_controller(store, FakeChannel([HOME]), FakeSelector("Home"))
        ctl.run_save("new")
        assert store.load() == {"Home": "new"}

    def test_cancel_saves_nothing(self, store):
        ctl = make_controller(store, FakeChannel([HOME]), FakeSelector(None))
        assert ctl.run_save("pw") is Outcome.CANCELLED
        assert store.load() == {}

    def test_named_target_skips_selector(self, store):
        selector = FakeSelector(None)
        ctl = make_controller(store, FakeChannel([OFFICE]), selector)
        assert ctl.run_save("s3cr3t", "Office") is Outcome.SAVED
        assert selector.shown is None
        assert store.load() == {"Office": "s3cr3t"}

    def test_named_target_out_of_range_raises(self, store):
        ctl = make_controller(store, FakeChannel([HOME]), FakeSelector(None))
        with pytest.raises(NetworkNotInRange):
            ctl.run_save("pw", "Office")
        assert store.load() == {}

    def test_named_target_out_of_range_allowed(self, store):
        ctl = make_controller(store, FakeChannel([HOME]), FakeSelector(None), save_unseen=True)
        assert ctl.run_save("pw", "Office") is Outcome.SAVED
        assert store.load() == {"Office": "pw"}

    def test_save_then_join_scenario(self, store):
        channel = FakeChannel([HOME, OFFICE], accepts={"Office": "s3cr3t"})
        make_controller(store, channel, FakeSelector("Office")).run_save("s3cr3t")

        selector = FakeSelector("Office")
        ctl = make_controller(store, channel, selector)
        assert ctl.run_join() is Outcome.JOINED
        assert "*  -55 dBm  Office" in selector.shown
        assert channel.connected == "Office"

    def test_channel_unreachable_store_untouched(self, store):
        ctl = make_controller(store, FakeChannel(reachable=False), FakeSelector("Home"))
        with pytest.raises(ScanUnavailable):
            ctl.run_save("pw")
        assert store.load() == {}


# ---------------------------------------------------------------------------
# Forget / list
# ---------------------------------------------------------------------------

class TestRunForget:
    def test_forgets_selected(self, store):
        store.save({"Home": "pw", "Office": "pw2"})
        selector = FakeSelector("Office")
        channel = FakeChannel(reachable=False)
        ctl = make_controller(store, channel, selector)
        assert ctl.run_forget() is Outcome.FORGOTTEN
        assert selector.shown == ["Home", "Office"]
        assert store.load() == {"Home": "pw"}
        assert channel.calls == []

    def test_cancel(self, store):
        store.save({"Home": "pw"})
        ctl = make_controller(store, FakeChannel(), FakeSelector(None))
        assert ctl.run_forget() is Outcome.CANCELLED
        assert store.load() == {"Home": "pw"}


class TestRunList:
    def test_returns_catalog(self, store):
        store.save({"Cabin": "pw"})
        ctl = make_controller(store, FakeChannel([HOME, CAFE]), FakeSelector(None))
        catalog = ctl.run_list()
        assert [e.identifier for e in catalog] == ["Cabin", "Home", "Cafe"]
        assert ctl.state is State.DONE

    def test_empty_scan_still_lists_saved(self, store):
        store.save({"Cabin": "pw"})
        ctl = make_controller(store, FakeChannel([]), FakeSelector(None))
        catalog = ctl.run_list()
        assert [e.identifier for e in catalog] == ["Cabin"]
        assert not catalog[0].in_range

    def test_failure(self, store):
        ctl = make_controller(store, FakeChannel(reachable=False), FakeSelector(None))
        with pytest.raises(ScanUnavailable):
            ctl.run_list()
        assert ctl.state is State.FAILED
