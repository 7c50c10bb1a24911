# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""OTP relay entry point.

Wires configuration, the shared code store, the mailbox watcher and the
HTTP responder together.  The responder serves from a background thread
while the watcher runs in the main thread until it stops or fails.
"""

import argparse
import logging
import signal
from pathlib import Path

from otprelay.config import ConfigError, RelayConfig
from otprelay.imap import IMAPConnectionError, IMAPIdleError, MailboxClient
from otprelay.logging import configure_logging, redact_secret
from otprelay.responder import ResponderService
from otprelay.store import CodeStore
from otprelay.watcher import MailboxWatcher


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_STARTUP_ERROR = 2
EXIT_RUNTIME_ERROR = 3


class RelayService:
    """Owns the store, watcher and responder for one relay process."""

    def __init__(
        self,
        config: RelayConfig,
        client: MailboxClient | None = None,
    ) -> None:
        """Build the components.

        Args:
            config: Relay configuration.
            client: IMAP client. Created from the config if None.
        """
        self.config = config
        self.store = CodeStore(config.code_file)
        self.watcher = MailboxWatcher(
            client
            or MailboxClient(
                config.imap_server,
                config.imap_port,
                config.username,
                config.password,
            ),
            self.store,
            config.allowed_services,
            mailbox=config.mailbox,
            advance_marker=config.advance_marker,
        )
        self.responder = ResponderService(
            self.store, host=config.http_host, port=config.http_port
        )

    def start(self) -> None:
        """Restore the last code, connect the watcher, start serving.

        Raises:
            IMAPConnectionError: If connecting or selecting fails.
            OSError: If the HTTP port cannot be bound.
        """
        self.store.load_initial()
        self.watcher.connect()
        self.watcher.start_marker()
        self.responder.start()

    def run(self) -> None:
        """Block in the watcher loop.

        Raises:
            IMAPIdleError: If the IDLE cycle fails.
            IMAPConnectionError: If polling fails.
        """
        self.watcher.run()

    def stop(self) -> None:
        """Wake the watcher so ``run()`` returns."""
        self.watcher.stop()

    def close(self) -> None:
        """Log out and stop serving."""
        self.watcher.close()
        self.responder.stop()


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0=success, 1=config error, 2=startup, 3=runtime error).
    """
    parser = argparse.ArgumentParser(
        description="OTP relay",
        epilog=(
            "Watches a mailbox for one-time passcode emails and serves the "
            "latest code over HTTP."
        ),
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config file (default: environment variables)",
    )
    args = parser.parse_args(argv)

    configure_logging(level=logging.DEBUG if args.debug else logging.INFO)

    try:
        config = RelayConfig.load(args.config)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return EXIT_CONFIG_ERROR

    redact_secret(config.password)

    service = RelayService(config)

    def shutdown_handler(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down...", signum)
        service.stop()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)

    try:
        try:
            service.start()
        except (IMAPConnectionError, OSError) as e:
            if service.watcher.stopping:
                logger.info("Shutdown requested during startup")
                return EXIT_OK
            logger.critical("Startup failed: %s", e)
            return EXIT_STARTUP_ERROR

        try:
            service.run()
        except (IMAPIdleError, IMAPConnectionError) as e:
            logger.critical("IDLE error: %s", e)
            return EXIT_RUNTIME_ERROR
        return EXIT_OK
    finally:
        service.close()
