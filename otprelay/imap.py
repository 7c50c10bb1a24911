# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""IMAP session wrapper with IDLE support.

``MailboxClient`` owns one TLS connection to the IMAP server and exposes the
handful of operations the watcher needs: login, mailbox selection, UID
search, header fetch and the IDLE start/wait/done cycle (RFC 2177).  It does
not retry; connection problems surface as exceptions for the caller to
treat as fatal.
"""

import imaplib
import logging
import os
import select
import socket
import ssl
from email.message import Message
from email.parser import BytesParser


logger = logging.getLogger(__name__)

#: Longest time to stay in IDLE before re-issuing it (RFC 2177 keepalive).
IDLE_KEEPALIVE_SECONDS = 29 * 60


class IMAPIdleError(Exception):
    """Raised when the IDLE cycle fails."""


class IMAPConnectionError(Exception):
    """Raised when connecting or a mailbox command fails."""


class MailboxClient:
    """Single IMAP connection over implicit TLS.

    Attributes:
        host: IMAP server hostname.
        port: IMAP server port.
        connection: Active IMAP connection (None when disconnected).
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self._username = username
        self._password = password
        self._ssl_context = ssl_context or ssl.create_default_context()
        self.connection: imaplib.IMAP4_SSL | None = None
        self._idle_tag: str | None = None
        self._interrupted = False

        # Writing to _interrupt_write wakes select() in idle_wait()
        self._interrupt_read, self._interrupt_write = os.pipe()
        os.set_blocking(self._interrupt_read, False)
        os.set_blocking(self._interrupt_write, False)
        self._pipe_closed = False

    def connect(self) -> None:
        """Open the TLS connection and log in.

        Raises:
            IMAPConnectionError: If the connection or login fails.
        """
        logger.info("Connecting to %s:%d...", self.host, self.port)
        try:
            self.connection = imaplib.IMAP4_SSL(
                self.host, self.port, ssl_context=self._ssl_context
            )
        except (imaplib.IMAP4.error, OSError) as e:
            raise IMAPConnectionError(
                f"Failed to connect to {self.host}:{self.port}: {e}"
            )

        try:
            self.connection.login(self._username, self._password)
        except (imaplib.IMAP4.error, OSError) as e:
            raise IMAPConnectionError(f"Failed to login: {e}")

        logger.info("Connected and authenticated successfully")

    def _require_connection(self) -> imaplib.IMAP4_SSL:
        if not self.connection:
            raise IMAPConnectionError("Not connected to IMAP server")
        return self.connection

    def select(self, mailbox: str) -> None:
        """Select a mailbox.

        Raises:
            IMAPConnectionError: If not connected or selection fails.
        """
        conn = self._require_connection()
        try:
            status, data = conn.select(mailbox)
        except (imaplib.IMAP4.error, OSError) as e:
            raise IMAPConnectionError(f"Failed to select {mailbox}: {e}")
        if status != "OK":
            raise IMAPConnectionError(f"Failed to select {mailbox}: {data!r}")
        logger.debug("Selected mailbox %s", mailbox)

    def search_uids(self, *criteria: str) -> list[int]:
        """Run UID SEARCH and return matching UIDs in server order.

        Args:
            criteria: IMAP search keys, e.g. ``("ALL",)`` or
                ``("UID", "5:*")``.

        Raises:
            IMAPConnectionError: If not connected or the search fails.
        """
        conn = self._require_connection()
        try:
            status, data = conn.uid("SEARCH", *criteria)
        except (imaplib.IMAP4.error, OSError) as e:
            raise IMAPConnectionError(f"IMAP search failed: {e}")
        if status != "OK":
            raise IMAPConnectionError(f"IMAP search failed: {status}")

        if not data or not data[0]:
            return []
        return [int(uid) for uid in data[0].split()]

    def fetch_headers(self, uid: int) -> Message | None:
        """Fetch and parse the header block of one message.

        Uses ``BODY.PEEK`` so fetching does not set the ``\\Seen`` flag.

        Returns:
            Parsed headers, or None if the server returned nothing usable
            (e.g. the message was expunged in the meantime).

        Raises:
            IMAPConnectionError: If not connected or the fetch fails.
        """
        conn = self._require_connection()
        try:
            status, data = conn.uid("FETCH", str(uid), "(BODY.PEEK[HEADER])")
        except (imaplib.IMAP4.error, OSError) as e:
            raise IMAPConnectionError(f"Failed to fetch UID {uid}: {e}")
        if status != "OK":
            raise IMAPConnectionError(f"Failed to fetch UID {uid}: {status}")

        # Response looks like [(b'1 (UID 5 BODY[HEADER] {342}', b'...'), b')']
        for item in data:
            if isinstance(item, tuple) and isinstance(item[1], bytes):
                return BytesParser().parsebytes(item[1], headersonly=True)

        logger.warning("No header data returned for UID %d", uid)
        return None

    def idle_start(self) -> None:
        """Send IDLE and wait for the continuation response.

        Raises:
            IMAPConnectionError: If not connected.
            IMAPIdleError: If the server rejects IDLE or the socket fails.
        """
        conn = self._require_connection()
        try:
            self._idle_tag = conn._new_tag().decode()
            conn.send(f"{self._idle_tag} IDLE\r\n".encode())

            response = conn.readline()
            if not response.startswith(b"+"):
                self._idle_tag = None
                raise IMAPIdleError(
                    f"IDLE not accepted: {response.decode(errors='replace')}"
                )
        except (imaplib.IMAP4.error, OSError) as e:
            self._idle_tag = None
            raise IMAPIdleError(f"Failed to enter IDLE mode: {e}")

        logger.debug("Entered IDLE mode with tag %s", self._idle_tag)

    def idle_wait(self, timeout: float = IDLE_KEEPALIVE_SECONDS) -> bool:
        """Block until the server reports activity, interrupt, or timeout.

        Any untagged response counts as activity; the cause (new message,
        flag change, expunge) is not distinguished.

        Returns:
            True if the server sent a notification, False on timeout or
            interrupt.

        Raises:
            IMAPConnectionError: If not connected.
            IMAPIdleError: If the server closed the connection, sent BYE,
                or the socket failed.
        """
        conn = self._require_connection()

        if self._interrupted:
            logger.debug("IDLE wait skipped - already interrupted")
            return False

        try:
            sock = conn.socket()
            readable, _, _ = select.select(
                [sock, self._interrupt_read], [], [], timeout
            )

            if self._interrupt_read in readable:
                try:
                    os.read(self._interrupt_read, 1024)
                except OSError:
                    pass
                logger.debug("IDLE wait interrupted")
                return False

            if sock not in readable:
                logger.debug("IDLE keepalive after %.0f seconds", timeout)
                return False

            line = conn.readline()
        except (imaplib.IMAP4.error, OSError, ValueError) as e:
            raise IMAPIdleError(f"IDLE wait error: {e}")

        if not line:
            raise IMAPIdleError("Connection closed by server during IDLE")
        if line.upper().startswith(b"* BYE"):
            raise IMAPIdleError(
                f"Server ended session: {line.decode(errors='replace')}"
            )

        logger.debug(
            "IDLE notification received: %s",
            line.decode(errors="replace").strip(),
        )
        return True

    def idle_done(self) -> None:
        """Send DONE and consume responses up to the tagged completion.

        Raises:
            IMAPConnectionError: If not connected.
            IMAPIdleError: If the socket fails or the server disconnects.
        """
        conn = self._require_connection()
        tag_bytes = self._idle_tag.encode() if self._idle_tag else b""

        try:
            conn.send(b"DONE\r\n")

            # Untagged notifications (e.g. "* 2 EXISTS") may precede the
            # tagged completion; bound the drain.
            for _ in range(100):
                response = conn.readline()
                if not response:
                    raise IMAPIdleError("Connection closed while leaving IDLE")
                if response.startswith(b"*"):
                    continue
                if tag_bytes and response.startswith(tag_bytes):
                    if b"OK" not in response.upper():
                        logger.warning(
                            "IDLE completed with non-OK status: %s",
                            response.decode(errors="replace").strip(),
                        )
                    break
                logger.warning(
                    "Unexpected IDLE response: %s",
                    response.decode(errors="replace").strip(),
                )
                break
        except (imaplib.IMAP4.error, OSError) as e:
            raise IMAPIdleError(f"Failed to exit IDLE mode: {e}")
        finally:
            self._idle_tag = None

        logger.debug("Exited IDLE mode")

    def interrupt(self) -> None:
        """Wake a blocking ``idle_wait()`` from another thread.

        Safe to call from signal handlers.
        """
        self._interrupted = True
        if not self._pipe_closed:
            try:
                os.write(self._interrupt_write, b"x")
            except OSError:
                pass

        if self.connection:
            try:
                self.connection.socket().shutdown(socket.SHUT_RDWR)
            except OSError:
                pass

    @property
    def interrupted(self) -> bool:
        return self._interrupted

    def logout(self) -> None:
        """Log out, skipping the exchange if the socket was shut down."""
        if not self.connection:
            return
        try:
            if not self._interrupted:
                self.connection.logout()
                logger.info("Logged out from IMAP server")
        except (imaplib.IMAP4.error, OSError) as e:
            logger.warning("Error during IMAP logout: %s", e)
        finally:
            self.connection = None

    def close(self) -> None:
        """Log out and release the interrupt pipe."""
        self.logout()
        if self._pipe_closed:
            return
        self._pipe_closed = True
        for fd in (self._interrupt_read, self._interrupt_write):
            try:
                os.close(fd)
            except OSError:
                pass
