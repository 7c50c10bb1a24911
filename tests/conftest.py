# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across the relay tests."""

from pathlib import Path
from unittest.mock import patch

import pytest

from otprelay.config import RelayConfig, load_env_files


RELAY_ENV_VARS = (
    "IMAP_SERVER",
    "IMAP_PORT",
    "IMAP_USERNAME",
    "IMAP_PASSWORD",
    "IMAP_MAILBOX",
    "PORT",
    "HTTP_HOST",
    "OTP_ALLOWED_SERVICES",
    "OTP_CODE_FILE",
    "OTP_ADVANCE_MARKER",
)


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Keep tests away from the real environment and XDG directories.

    Clears relay variables, points XDG config lookups at ``tmp_path``,
    runs from ``tmp_path`` so no stray ``.env`` is picked up, and forgets
    that ``.env`` files were already loaded.
    """
    for name in RELAY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)

    config_root = tmp_path / "xdg-config"
    config_root.mkdir(exist_ok=True)
    load_env_files.cache_clear()
    with patch("otprelay.config.user_config_path", return_value=config_root):
        yield
    load_env_files.cache_clear()


@pytest.fixture
def relay_config(tmp_path: Path) -> RelayConfig:
    """Relay configuration pointing at a fake server."""
    return RelayConfig(
        imap_server="imap.example.com",
        imap_port=993,
        username="relay@example.com",
        password="test_password",
        http_host="127.0.0.1",
        http_port=8080,
        code_file=tmp_path / "code.json",
    )


def make_headers(
    subject: str,
    sender: str = "OpenAI <noreply@tm.openai.com>",
) -> bytes:
    """Build a raw RFC 5322 header block."""
    return (
        f"From: {sender}\r\n"
        f"To: relay@example.com\r\n"
        f"Subject: {subject}\r\n"
        f"Date: Sat, 17 Oct 2026 12:00:00 +0000\r\n"
        f"\r\n"
    ).encode()


def fetch_response(uid: int, headers: bytes) -> tuple[str, list]:
    """Shape a headers block the way imaplib returns a UID FETCH."""
    envelope = f"1 (UID {uid} BODY[HEADER] {{{len(headers)}}}".encode()
    return ("OK", [(envelope, headers), b")"])
