# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Two-factor code model and subject-line extraction.

Qualifying emails carry their code in the subject, e.g.
``Your ChatGPT code is 482913``.  Extraction is a pure function of the
subject and the service allow-list; the human-memorable phrase that is
served alongside the code is chosen later, when the code is committed to
the store.
"""

import logging
import re
from collections.abc import Collection, Sequence
from dataclasses import dataclass, replace
from email.header import decode_header
from email.message import Message
from email.utils import getaddresses


logger = logging.getLogger(__name__)


# Matches anywhere in the subject; the service group is greedy.
CODE_SUBJECT_PATTERN = re.compile(r"Your (.+) code is (\d+)")

#: Line break starting a header continuation line (RFC 5322 folding).
_FOLD_PATTERN = re.compile(r"\r?\n(?=[ \t])")

#: Fixed phrase vocabulary served next to the code.
PHRASES: tuple[str, ...] = (
    "magic beans",
    "smiling cops",
    "new friends",
    "caught fishes",
    "pet dogs",
    "meowing catgirls",
    "angry chefs",
    "ready scones",
)


@dataclass(frozen=True)
class TwoFactorCode:
    """A one-time passcode extracted from an email subject.

    Attributes:
        code: Numeric code, non-empty.
        service: Service name captured from the subject.
        phrase: Word pair assigned when the code is committed. Empty for
            freshly extracted codes.
    """

    code: str
    service: str
    phrase: str = ""

    def __post_init__(self) -> None:
        """Validate the code.

        Raises:
            ValueError: If code is empty or contains non-digits.
        """
        if not self.code or not self.code.isdigit():
            raise ValueError(f"Invalid two-factor code: {self.code!r}")

    def with_phrase(self, phrase: str) -> "TwoFactorCode":
        """Return a copy carrying the given phrase."""
        return replace(self, phrase=phrase)


def pick_phrase(vocabulary: Sequence[str], seed: int) -> str:
    """Select a phrase from the vocabulary by seed.

    Args:
        vocabulary: Ordered phrase list.
        seed: Any integer, typically a clock reading in nanoseconds.

    Returns:
        ``vocabulary[seed % len(vocabulary)]``.

    Raises:
        ValueError: If the vocabulary is empty.
    """
    if not vocabulary:
        raise ValueError("Phrase vocabulary must not be empty")
    return vocabulary[seed % len(vocabulary)]


def extract_code(
    subject: str,
    sender: str,
    allowed_services: Collection[str],
) -> TwoFactorCode | None:
    """Extract a two-factor code from an email subject.

    Matches ``Your {service} code is {digits}`` anywhere in the subject.
    A match naming a service outside the allow-list is discarded.

    Args:
        subject: Decoded subject line.
        sender: Sender address, used for log context only.
        allowed_services: Accepted service names (exact match).

    Returns:
        Code with an empty phrase, or None if the subject does not qualify.
    """
    match = CODE_SUBJECT_PATTERN.search(subject)
    if match is None:
        logger.debug("No code in subject from %s: %s", sender, subject)
        return None

    service, code = match.group(1), match.group(2)
    logger.info("2FA code detected: %s for %s", code, service)

    if service not in allowed_services:
        logger.info(
            "Service %r from %s not among allowed services, ignoring code",
            service,
            sender,
        )
        return None

    return TwoFactorCode(code=code, service=service)


def decode_subject(message: Message) -> str:
    """Decode the Subject header from an email message.

    Subjects may use RFC 2047 encoded-words (e.g. ``=?utf-8?B?...?=``) and
    may be folded over several lines; ``Message.get()`` returns the raw
    form with both intact.

    Args:
        message: Parsed email message (headers are enough).

    Returns:
        Decoded subject string, or empty string if not present.
    """
    raw = message.get("Subject", "")
    if not raw:
        return ""

    unfolded = _FOLD_PATTERN.sub("", str(raw))
    decoded_parts: list[str] = []
    for data, charset in decode_header(unfolded):
        if isinstance(data, bytes):
            try:
                text = data.decode(charset or "utf-8", errors="replace")
            except LookupError:
                text = data.decode("utf-8", errors="replace")
            decoded_parts.append(text)
        else:
            decoded_parts.append(data)
    return "".join(decoded_parts)


def format_sender(message: Message) -> str:
    """Render the first From address as ``mailbox@host``.

    Returns ``unknown`` when the header is missing or has no address.
    """
    addresses = getaddresses(message.get_all("From", []))
    for _, address in addresses:
        if address:
            return address
    return "unknown"
