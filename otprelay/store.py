# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Latest-code store shared between the mailbox watcher and the responder.

The store holds a single optional ``TwoFactorCode``.  The watcher is the
only writer and the HTTP responder the only reader; both receive the same
``CodeStore`` instance at construction.  Every update is written to a JSON
file, while the lock is held, so the latest code survives a restart and
the file never lags behind a newer in-memory code.  The file is
best-effort: the in-memory slot is authoritative for serving.
"""

import json
import logging
import threading
import time
from collections.abc import Sequence
from pathlib import Path

from otprelay.codes import PHRASES, TwoFactorCode, pick_phrase


logger = logging.getLogger(__name__)


class CodeStoreUnavailableError(Exception):
    """Raised when the store lock cannot be acquired in time."""


def save_code(path: Path, code: TwoFactorCode) -> None:
    """Write a code to disk as JSON.

    Args:
        path: Destination file.
        code: Code to persist.

    Raises:
        OSError: If the file cannot be written.
    """
    data = {"code": code.code, "service": code.service, "phrase": code.phrase}
    with path.open("w") as f:
        json.dump(data, f, indent=2)


def load_code(path: Path) -> TwoFactorCode | None:
    """Read a code previously written by ``save_code``.

    Returns:
        The stored code, or None if the file is missing or invalid.
    """
    if not path.exists():
        logger.debug("No code file found at %s", path)
        return None

    try:
        with path.open("r") as f:
            data = json.load(f)
        return TwoFactorCode(
            code=str(data["code"]),
            service=str(data["service"]),
            phrase=str(data["phrase"]),
        )
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning("Failed to load code file %s: %s", path, e)
        return None


class CodeStore:
    """Lock-guarded single slot for the latest two-factor code.

    Attributes:
        path: File the latest code is persisted to, or None to keep the
            store in memory only.
    """

    def __init__(
        self,
        path: Path | None = None,
        phrases: Sequence[str] = PHRASES,
        lock_timeout: float = 1.0,
    ) -> None:
        """Initialize an empty store.

        Args:
            path: Persistence file. None disables persistence.
            phrases: Vocabulary phrases are drawn from on commit.
            lock_timeout: Seconds to wait for the lock before giving up.
        """
        if not phrases:
            raise ValueError("Phrase vocabulary must not be empty")
        self.path = path
        self._phrases = tuple(phrases)
        self._lock_timeout = lock_timeout
        self._lock = threading.Lock()
        self._code: TwoFactorCode | None = None

    @property
    def phrases(self) -> tuple[str, ...]:
        return self._phrases

    def load_initial(self) -> TwoFactorCode | None:
        """Restore the slot from the persistence file.

        Called once at startup. Never raises; a missing or corrupt file
        leaves the store empty.

        Returns:
            The restored code, or None.
        """
        if self.path is None:
            return None

        code = load_code(self.path)
        if code is None:
            return None

        with self._lock:
            self._code = code
        logger.info(
            "Loaded existing 2FA code from disk: %s %s", code.code, code.phrase
        )
        return code

    def get(self) -> TwoFactorCode | None:
        """Return the current code.

        Codes are immutable, so the returned record can be used freely
        after the lock is released.

        Raises:
            CodeStoreUnavailableError: If the lock is not acquired within
                the configured timeout.
        """
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise CodeStoreUnavailableError("Timed out waiting for code store")
        try:
            return self._code
        finally:
            self._lock.release()

    def set(
        self, code: TwoFactorCode, seed: int | None = None
    ) -> TwoFactorCode | None:
        """Commit a code with a freshly picked phrase and persist it.

        Args:
            code: Extracted code. Any existing phrase is replaced.
            seed: Phrase selection seed. Defaults to the monotonic clock.

        Returns:
            The committed code, or None if the lock was unavailable and the
            update was skipped.
        """
        if seed is None:
            seed = time.monotonic_ns()
        committed = code.with_phrase(pick_phrase(self._phrases, seed))

        if not self._lock.acquire(timeout=self._lock_timeout):
            logger.error(
                "Code store unavailable, dropping code for %s", code.service
            )
            return None
        try:
            self._code = committed
            logger.info(
                "Updated 2FA code: %s %s", committed.code, committed.phrase
            )
            self._persist(committed)
        finally:
            self._lock.release()
        return committed

    def _persist(self, code: TwoFactorCode) -> None:
        if self.path is None:
            return
        try:
            save_code(self.path, code)
        except OSError as e:
            logger.error("Failed to save code to %s: %s", self.path, e)
            return
        logger.info("Saved 2FA code to %s", self.path)
