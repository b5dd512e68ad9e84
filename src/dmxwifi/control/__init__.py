"""Supplicant control channel and post-association helpers."""

from dmxwifi.control.dhclient import request_lease  # noqa: F401
from dmxwifi.control.wpa_cli import WpaCliChannel  # noqa: F401
