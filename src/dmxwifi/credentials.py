"""Saved wifi credentials (the network library).

The library is a CSV file with one ``ssid,secret`` record per line.  It
is always read and written as a whole: every mutation loads the file,
changes the mapping in memory and atomically replaces the file with a
complete new copy, so concurrent readers see either the old or the new
library and never a partial one.

The file is UTF-8.  SSIDs that are not valid UTF-8 are kept byte for byte
through ``surrogateescape``, the same representation the control channel
uses for them.
"""

from __future__ import annotations

import csv
import io
import logging
import os
import stat
import tempfile

from dmxwifi.wifi_common import StoreUnreadable, StoreUnwritable

logger = logging.getLogger(__name__)


class CredentialStore:
    """ESSID -> secret mapping persisted at *path*."""

    def __init__(self, path: str) -> None:
        self.path = path

    # -----------------------------------------------------------------------
    # Whole-file I/O
    # -----------------------------------------------------------------------

    def load(self) -> dict[str, str]:
        """Read the library.

        A missing file is an empty library.  Raises :class:`StoreUnreadable`
        if the file exists but cannot be read or parsed.
        """
        if not os.path.lexists(self.path):
            logger.debug("no library at %s", self.path)
            return {}

        self._warn_if_world_readable()

        try:
            with open(
                self.path, newline="", encoding="utf-8", errors="surrogateescape",
            ) as f:
                content = f.read()
        except OSError as exc:
            raise StoreUnreadable(
                f"Error reading saved networks from '{self.path}': {exc}"
            ) from exc

        credentials: dict[str, str] = {}
        reader = csv.reader(io.StringIO(content, newline=""), strict=True)
        try:
            for row in reader:
                if not row:
                    continue
                if len(row) != 2:
                    raise StoreUnreadable(
                        f"Malformed record on line {reader.line_num} of "
                        f"'{self.path}': expected 2 fields, found {len(row)}"
                    )
                identifier, secret = row
                credentials[identifier] = secret
        except csv.Error as exc:
            raise StoreUnreadable(
                f"Malformed saved networks file '{self.path}': {exc}"
            ) from exc

        logger.debug("loaded %d saved network(s) from %s", len(credentials), self.path)
        return credentials

    def save(self, credentials: dict[str, str]) -> None:
        """Replace the library with *credentials*.

        Raises :class:`StoreUnwritable` on filesystem errors; the previous
        file is left untouched in that case.
        """
        buf = io.StringIO(newline="")
        writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
        for identifier in sorted(credentials):
            writer.writerow([identifier, credentials[identifier]])

        directory = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            # mkstemp creates the file with mode 0600.
            fd, tmp_path = tempfile.mkstemp(
                prefix=".dmxwifi_lib.", suffix=".tmp", dir=directory,
            )
            with os.fdopen(
                fd, "w", newline="", encoding="utf-8", errors="surrogateescape",
            ) as f:
                f.write(buf.getvalue())
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as exc:
            raise StoreUnwritable(
                f"Unable to write saved networks to '{self.path}': {exc}"
            ) from exc
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    logger.debug("could not remove temporary file %s", tmp_path)

        logger.debug("saved %d network(s) to %s", len(credentials), self.path)

    # -----------------------------------------------------------------------
    # Single-record updates
    # -----------------------------------------------------------------------

    def upsert(self, identifier: str, secret: str) -> None:
        """Insert or overwrite the secret for *identifier*."""
        credentials = self.load()
        credentials[identifier] = secret
        self.save(credentials)

    def delete(self, identifier: str) -> bool:
        """Forget *identifier*.  Returns False if it was not saved."""
        credentials = self.load()
        if identifier not in credentials:
            return False
        del credentials[identifier]
        self.save(credentials)
        return True

    def clear(self) -> None:
        """Forget every saved network."""
        self.save({})

    def _warn_if_world_readable(self) -> None:
        try:
            file_stat = os.stat(self.path)
        except OSError:
            return
        if stat.S_ISREG(file_stat.st_mode) and file_stat.st_mode & stat.S_IROTH:
            logger.warning(
                "saved networks file '%s' is world-readable; "
                "consider restricting permissions to 600",
                self.path,
            )
