"""WiFi scanning."""

from dmxwifi.scanning.reader import ScanReader  # noqa: F401
