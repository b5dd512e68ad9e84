"""Allow ``python -m dmxwifi``."""

from dmxwifi.cli import main

main()
