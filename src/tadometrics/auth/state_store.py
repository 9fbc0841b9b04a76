"""Persistent credential state for one tado° account.

Stores the :class:`~tadometrics.models.CredentialState` in a single JSON
file (``~/.local/share/tadometrics/state.json`` by default). Files are
written atomically via :func:`~tadometrics.config.atomic_write` with
``0o600`` permissions so that tokens are never world-readable, even
momentarily, and a reader never observes a torn write.

Loading is forgiving: a missing, unreadable or malformed file yields an
empty state and the token manager simply starts over; a single field of the
wrong type is dropped on its own. Saving is strict: a
write failure raises :class:`~tadometrics.exceptions.StateFileError`.

Concurrent exporter processes sharing one state file can race on
refresh (last writer wins and may persist a refresh token the provider
has already rotated away). :meth:`StateStore.lock` takes an advisory
``flock`` on a sibling ``.lock`` file so that a whole load-decide-save
cycle runs in one process at a time.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError

from tadometrics.config import atomic_write
from tadometrics.exceptions import StateFileError
from tadometrics.models import CredentialState

logger = logging.getLogger(__name__)

_LOCK_POLL_SECONDS = 0.1


class StateStore:
    """Read/write the credential state file.

    Args:
        path: Location of the JSON state file.
        lock_timeout: Seconds :meth:`lock` waits for another process to
            release the advisory lock.

    Example::

        store = StateStore(Path("/tmp/tado-state.json"))
        state = store.load()
        state.access_token = "tok"
        store.save(state)
    """

    def __init__(self, path: Path | str, lock_timeout: float = 180.0) -> None:
        self._path = Path(path).expanduser()
        self._lock_timeout = lock_timeout

    @property
    def path(self) -> Path:
        """The filesystem path to the state file."""
        return self._path

    @property
    def lock_path(self) -> Path:
        return self._path.with_name(self._path.name + ".lock")

    def load(self) -> CredentialState:
        """Load the stored state from disk.

        Fields are validated one by one: a field holding a value of the
        wrong type is dropped (and logged) while the rest of the record,
        tokens included, is kept.

        Returns:
            The deserialised :class:`CredentialState`, or an empty one if
            the file does not exist or cannot be parsed.
        """
        if not self._path.is_file():
            return CredentialState()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (ValueError, OSError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self._path, exc)
            return CredentialState()
        if not isinstance(data, dict):
            logger.warning("Ignoring state file %s: not a JSON object", self._path)
            return CredentialState()

        try:
            return CredentialState.model_validate(data)
        except ValidationError as exc:
            invalid = {str(err["loc"][0]) for err in exc.errors() if err["loc"]}
        logger.warning(
            "Ignoring invalid fields in state file %s: %s",
            self._path,
            ", ".join(sorted(invalid)),
        )
        return CredentialState.model_validate(
            {key: value for key, value in data.items() if key not in invalid}
        )

    def save(self, state: CredentialState) -> None:
        """Persist the full state atomically with ``0o600`` permissions.

        Raises:
            StateFileError: If the file cannot be written.
        """
        data = state.model_dump(mode="json")
        text = json.dumps(data, indent=2) + "\n"
        try:
            atomic_write(self._path, text, mode=0o600)
        except OSError as exc:
            raise StateFileError(f"Cannot write state file {self._path}: {exc}") from exc
        logger.debug("Saved credential state to %s", self._path)

    def clear(self) -> None:
        """Delete the state file if it exists."""
        if self._path.is_file():
            self._path.unlink()

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Hold an exclusive advisory lock for the duration of the block.

        Raises:
            StateFileError: If the lock file cannot be opened or the lock is
                not acquired within ``lock_timeout`` seconds.
        """
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(self.lock_path), os.O_CREAT | os.O_RDWR, 0o600)
        except OSError as exc:
            raise StateFileError(f"Cannot open lock file {self.lock_path}: {exc}") from exc

        try:
            deadline = time.monotonic() + self._lock_timeout
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except OSError:
                    if time.monotonic() >= deadline:
                        raise StateFileError(
                            f"Timed out after {self._lock_timeout:.0f}s waiting for "
                            f"{self.lock_path}"
                        ) from None
                    time.sleep(_LOCK_POLL_SECONDS)
            logger.debug("Acquired state lock %s", self.lock_path)
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
