"""dmxwifi: pick a wireless network from a dmenu list and join it."""

__version__ = "0.3.0"
