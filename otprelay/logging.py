# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Process logging for the relay.

Progress lines (connection status, detected emails, extracted codes) go to
stderr through the root logger.  Once the configuration is known, the IMAP
password is hidden from every line the root handlers emit, including
imaplib errors that echo the login command back.
"""

import logging


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
REDACTED = "[REDACTED]"


class PasswordRedactor(logging.Filter):
    """Handler filter replacing one secret in rendered messages.

    Works on the merged message, so the secret is caught whether it sits
    in the format string or in one of the arguments.
    """

    def __init__(self, secret: str) -> None:
        super().__init__()
        self.secret = secret

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # Malformed record; let the handler report it
            return True
        if self.secret in message:
            record.msg = message.replace(self.secret, REDACTED)
            record.args = None
        return True


def configure_logging(level: int = logging.INFO) -> None:
    """Route all records to stderr, replacing existing root handlers."""
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


def redact_secret(secret: str) -> None:
    """Hide ``secret`` from everything the root handlers emit.

    Applies to the handlers installed at call time, so call it after
    ``configure_logging()``.  Empty secrets are ignored.
    """
    if not secret:
        return
    for handler in logging.getLogger().handlers:
        handler.addFilter(PasswordRedactor(secret))
