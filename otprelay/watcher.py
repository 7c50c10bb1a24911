# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Mailbox watcher: IDLE loop feeding extracted codes into the store.

The watcher moves through these states::

    CONNECTING -> AUTHENTICATED -> SELECTED -> IDLE <-> POLLING
                                                 |
                                        FATAL / STOPPED

At startup the highest UID in the mailbox becomes the sequence marker.
Every wake-up re-searches ``UID marker+1:*`` and runs each message through
the extractor.  The marker stays at its startup value unless
``advance_marker`` is set, so messages already handled are extracted and
committed again on every later wake-up.  Committing the same code again
only changes the phrase.

Before each IDLE the watcher searches above the highest UID it has polled
and skips IDLE when mail is already waiting, since a message that landed
during a poll produces no further IDLE notification.

Errors are not retried: a failure while connecting, waiting or polling
leaves the watcher in ``FATAL`` and propagates to the caller.
"""

import enum
import logging
from collections.abc import Collection

from otprelay.codes import decode_subject, extract_code, format_sender
from otprelay.imap import (
    IDLE_KEEPALIVE_SECONDS,
    IMAPConnectionError,
    IMAPIdleError,
    MailboxClient,
)
from otprelay.store import CodeStore


logger = logging.getLogger(__name__)


class WatcherState(enum.Enum):
    """Lifecycle state of a MailboxWatcher."""

    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    SELECTED = "selected"
    IDLE = "idle"
    POLLING = "polling"
    FATAL = "fatal"
    STOPPED = "stopped"


class MailboxWatcher:
    """Watches one mailbox and commits qualifying codes to a store.

    Attributes:
        mailbox: Name of the watched mailbox.
        advance_marker: Whether the marker follows processed messages.
    """

    def __init__(
        self,
        client: MailboxClient,
        store: CodeStore,
        allowed_services: Collection[str],
        *,
        mailbox: str = "INBOX",
        advance_marker: bool = False,
        idle_timeout: float = IDLE_KEEPALIVE_SECONDS,
    ) -> None:
        """Initialize the watcher.

        Args:
            client: IMAP client, not yet connected.
            store: Shared store receiving committed codes.
            allowed_services: Service names the extractor accepts.
            mailbox: Mailbox to select.
            advance_marker: Advance the marker to the highest UID seen after
                each poll instead of keeping the startup boundary.
            idle_timeout: Seconds to stay in IDLE before re-issuing it.
        """
        self._client = client
        self._store = store
        self._allowed_services = frozenset(allowed_services)
        self.mailbox = mailbox
        self.advance_marker = advance_marker
        self._idle_timeout = idle_timeout
        self._state = WatcherState.CONNECTING
        self._marker: int | None = None
        self._last_seen = 0

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def marker(self) -> int | None:
        """Highest UID treated as already present, None before startup."""
        return self._marker

    def connect(self) -> None:
        """Connect, authenticate and select the mailbox.

        Raises:
            IMAPConnectionError: On any failure. The state becomes FATAL.
        """
        self._state = WatcherState.CONNECTING
        try:
            self._client.connect()
            self._state = WatcherState.AUTHENTICATED
            self._client.select(self.mailbox)
            self._state = WatcherState.SELECTED
        except IMAPConnectionError:
            self._state = WatcherState.FATAL
            raise

    def start_marker(self) -> int:
        """Record the highest UID currently in the mailbox.

        Returns:
            The marker (0 for an empty mailbox).

        Raises:
            IMAPConnectionError: If the search fails. The state becomes
                FATAL.
        """
        try:
            uids = self._client.search_uids("ALL")
        except IMAPConnectionError:
            self._state = WatcherState.FATAL
            raise

        self._marker = max(uids, default=0)
        self._last_seen = self._marker
        logger.info("Starting from UID: %d", self._marker + 1)
        return self._marker

    def wait_for_activity(self) -> bool:
        """Run one IDLE cycle.

        Before sending IDLE, checks for messages that arrived since the
        last poll.  Their EXISTS notification was consumed by the earlier
        commands, so IDLE alone would not report them.

        Returns:
            True if new messages are pending or the server reported mailbox
            activity, False if the keepalive interval elapsed or the
            watcher was stopped.

        Raises:
            IMAPConnectionError: If the pending-message search fails.
            IMAPIdleError: If the IDLE cycle fails.
        """
        pending = self._uids_above(self._last_seen)
        if pending:
            logger.debug(
                "Skipping IDLE: %d new messages pending", len(pending)
            )
            return True

        self._state = WatcherState.IDLE
        logger.info("Waiting for new emails (IDLE mode)...")

        self._client.idle_start()
        activity = self._client.idle_wait(self._idle_timeout)
        if self._client.interrupted:
            return False
        self._client.idle_done()
        return activity

    def _uids_above(self, bound: int) -> list[int]:
        # "UID n:*" always matches the newest message even when its UID is
        # below n, hence the explicit comparison.
        return [
            uid
            for uid in self._client.search_uids("UID", f"{bound + 1}:*")
            if uid > bound
        ]

    def poll(self) -> int:
        """Process every message above the marker.

        Returns:
            Number of codes committed to the store.

        Raises:
            IMAPConnectionError: If searching or fetching fails.
        """
        if self._marker is None:
            raise RuntimeError("start_marker() must be called before poll()")

        self._state = WatcherState.POLLING
        uids = self._uids_above(self._marker)

        committed = 0
        for uid in uids:
            message = self._client.fetch_headers(uid)
            if message is None:
                continue

            sender = format_sender(message)
            subject = decode_subject(message)
            logger.info("New email from: %s", sender)
            logger.info("Subject: %s", subject)

            code = extract_code(subject, sender, self._allowed_services)
            if code is None:
                continue
            if self._store.set(code) is not None:
                committed += 1

        if uids:
            self._last_seen = max(self._last_seen, max(uids))
        if self.advance_marker and uids:
            self._marker = max(uids)
            logger.debug("Advanced marker to UID %d", self._marker)

        return committed

    def run(self) -> None:
        """Wait and poll until stopped.

        Records the marker first if ``start_marker()`` was not called.

        Raises:
            IMAPIdleError: If waiting fails. The state becomes FATAL.
            IMAPConnectionError: If polling fails. The state becomes FATAL.
        """
        try:
            if self._marker is None:
                self.start_marker()
            while not self._client.interrupted:
                if not self.wait_for_activity():
                    continue
                logger.info("New email activity detected")
                self.poll()
        except (IMAPIdleError, IMAPConnectionError):
            if self._client.interrupted:
                self._state = WatcherState.STOPPED
                return
            self._state = WatcherState.FATAL
            raise

        self._state = WatcherState.STOPPED

    @property
    def stopping(self) -> bool:
        """True once ``stop()`` has been called."""
        return self._client.interrupted

    def stop(self) -> None:
        """Ask a running ``run()`` to return. Thread- and signal-safe."""
        self._client.interrupt()

    def close(self) -> None:
        """Log out from the server and release client resources."""
        self._client.close()
