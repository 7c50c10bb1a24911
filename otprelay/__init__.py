# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""OTP relay.

Watches an IMAP mailbox for one-time passcode emails and republishes the
most recent code over HTTP:
- Code model and subject extraction (codes)
- Shared latest-code store with JSON persistence (store)
- IMAP session wrapper with IDLE support (imap)
- Mailbox watcher state machine (watcher)
- Plain-text HTTP responder (responder)
- Configuration loading (config)
"""

from otprelay.codes import PHRASES, TwoFactorCode, extract_code, pick_phrase
from otprelay.config import ConfigError, RelayConfig
from otprelay.imap import IMAPConnectionError, IMAPIdleError, MailboxClient
from otprelay.responder import ERROR_BODY, SENTINEL_BODY, ResponderService
from otprelay.store import CodeStore, CodeStoreUnavailableError
from otprelay.watcher import MailboxWatcher, WatcherState


__all__ = [
    # codes
    "PHRASES",
    "TwoFactorCode",
    "extract_code",
    "pick_phrase",
    # config
    "ConfigError",
    "RelayConfig",
    # imap
    "IMAPConnectionError",
    "IMAPIdleError",
    "MailboxClient",
    # responder
    "ERROR_BODY",
    "SENTINEL_BODY",
    "ResponderService",
    # store
    "CodeStore",
    "CodeStoreUnavailableError",
    # watcher
    "MailboxWatcher",
    "WatcherState",
]
