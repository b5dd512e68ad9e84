"""dmxwifi configuration.

Settings live in a TOML file and are loaded into a :class:`Config`
dataclass.  The file is looked up in this order:

* an explicit path (``dmxwifi -c FILE``)
* ``$DMXWIFI_CONFIG``
* ``$XDG_CONFIG_HOME/dmxwifi.toml`` (``~/.config/dmxwifi.toml``)

and any key that is absent falls back to the dataclass default.  A broken
file found through the environment or the config directory is logged and
ignored so the tool still works with defaults.  Example::

    interface = "wlp3s0"
    library = "/home/me/.config/dmxwifi_lib.csv"
    selector = ["rofi", "-dmenu", "-i"]
    dhclient = "/usr/sbin/dhclient"
    askpass = "/usr/bin/ssh-askpass"
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field, fields
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from dmxwifi.wifi_common import ConfigError, config_directory

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DMXWIFI_CONFIG"
CONFIG_FILENAME = "dmxwifi.toml"
LIBRARY_FILENAME = "dmxwifi_lib.csv"


def _default_library() -> str:
    return os.path.join(config_directory(), LIBRARY_FILENAME)


def _default_selector() -> list[str]:
    return ["dmenu", "-i", "-l", "20"]


def _check_type(name: str, value: Any, default: Any) -> None:
    """Raise TypeError unless *value* has the same kind as *default*."""
    if default is None:
        ok = value is None or isinstance(value, str)
        expected = "a string"
    elif isinstance(default, bool):
        ok = isinstance(value, bool)
        expected = "true or false"
    elif isinstance(default, int):
        ok = isinstance(value, int) and not isinstance(value, bool)
        expected = "an integer"
    elif isinstance(default, float):
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        expected = "a number"
    elif isinstance(default, list):
        ok = isinstance(value, list) and all(isinstance(v, str) for v in value)
        expected = "a list of strings"
    else:
        ok = isinstance(value, type(default))
        expected = f"a {type(default).__name__}"
    if not ok:
        raise TypeError(
            f"config key '{name}' must be {expected}, got {value!r}"
        )


@dataclass
class Config:
    """Runtime settings for one dmxwifi invocation."""

    interface: str = "wlan0"
    library: str = field(default_factory=_default_library)
    wpa_socket: str = "/var/run/wpa_supplicant"
    wpa_cli: str = "/usr/sbin/wpa_cli"
    dhclient: str = ""
    askpass: str | None = None
    selector: list[str] = field(default_factory=_default_selector)
    prompt: str = "wifi"
    scan_attempts: int = 10
    scan_interval: float = 0.5
    join_attempts: int = 15
    join_interval: float = 1.0
    command_timeout: float = 10.0
    save_unseen: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Build a Config from *data*, ignoring keys it does not declare.

        Raises:
            TypeError: If a value does not match the type of its default.
        """
        valid_keys = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - valid_keys)
        if unknown:
            logger.warning("ignoring unknown config keys: %s", ", ".join(unknown))
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        if isinstance(filtered.get("selector"), str):
            filtered["selector"] = filtered["selector"].split()
        defaults = cls()
        for name, value in filtered.items():
            _check_type(name, value, getattr(defaults, name))
        cfg = cls(**filtered)
        cfg.library = os.path.expanduser(cfg.library)
        return cfg

    @classmethod
    def from_file(cls, path: str) -> Config:
        """Load a Config from the TOML file at *path*.

        Raises:
            OSError: If the file cannot be read.
            tomllib.TOMLDecodeError: If the file is not valid TOML.
            TypeError: If a value has the wrong shape for its key.
        """
        with open(path, "rb") as fh:
            raw: dict[str, Any] = tomllib.load(fh)
        return cls.from_dict(raw)


def _candidate_paths() -> list[str]:
    paths = []
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        paths.append(env_path)
    paths.append(os.path.join(config_directory(), CONFIG_FILENAME))
    return paths


def load_config(path: str | None = None) -> Config:
    """Return the effective configuration.

    An explicit *path* must exist and parse, otherwise :class:`ConfigError`
    is raised.  Without one, the first readable candidate wins and broken
    candidates are skipped.
    """
    if path is not None:
        logger.debug("loading config from %s", path)
        try:
            return Config.from_file(path)
        except (OSError, tomllib.TOMLDecodeError, TypeError) as exc:
            raise ConfigError(f"Cannot load config file '{path}': {exc}") from exc

    for candidate in _candidate_paths():
        if not os.path.isfile(candidate):
            continue
        try:
            cfg = Config.from_file(candidate)
        except (OSError, tomllib.TOMLDecodeError, TypeError) as exc:
            logger.warning("ignoring config file %s: %s", candidate, exc)
            continue
        logger.debug("loaded config from %s", candidate)
        return cfg

    logger.debug("no config file found, using defaults")
    return Config()
