# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for otprelay.config."""

import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from otprelay.config import (
    DEFAULT_ALLOWED_SERVICES,
    ConfigError,
    RelayConfig,
    _coerce_bool,
    get_config_path,
    get_dotenv_path,
    load_env_files,
)


@pytest.fixture
def required_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IMAP_SERVER", "imap.example.com")
    monkeypatch.setenv("IMAP_PORT", "993")
    monkeypatch.setenv("IMAP_USERNAME", "relay@example.com")
    monkeypatch.setenv("IMAP_PASSWORD", "s3cret-pw")


class TestFromEnv:
    def test_required_and_defaults(self, required_env: None) -> None:
        config = RelayConfig.from_env()

        assert config.imap_server == "imap.example.com"
        assert config.imap_port == 993
        assert config.username == "relay@example.com"
        assert config.password == "s3cret-pw"
        assert config.mailbox == "INBOX"
        assert config.http_host == "0.0.0.0"
        assert config.http_port == 8080
        assert config.allowed_services == DEFAULT_ALLOWED_SERVICES
        assert config.code_file == Path("code.json")
        assert config.advance_marker is False

    def test_optional_overrides(
        self, required_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("PORT", "9000")
        monkeypatch.setenv("HTTP_HOST", "127.0.0.1")
        monkeypatch.setenv("IMAP_MAILBOX", "OTP")
        monkeypatch.setenv("OTP_ALLOWED_SERVICES", "ChatGPT, Slack ,")
        monkeypatch.setenv("OTP_CODE_FILE", "/var/lib/otprelay/code.json")
        monkeypatch.setenv("OTP_ADVANCE_MARKER", "yes")

        config = RelayConfig.from_env()

        assert config.http_port == 9000
        assert config.http_host == "127.0.0.1"
        assert config.mailbox == "OTP"
        assert config.allowed_services == frozenset({"ChatGPT", "Slack"})
        assert config.code_file == Path("/var/lib/otprelay/code.json")
        assert config.advance_marker is True

    @pytest.mark.parametrize(
        "missing",
        ["IMAP_SERVER", "IMAP_PORT", "IMAP_USERNAME", "IMAP_PASSWORD"],
    )
    def test_missing_required(
        self,
        required_env: None,
        monkeypatch: pytest.MonkeyPatch,
        missing: str,
    ) -> None:
        monkeypatch.delenv(missing)
        with pytest.raises(ConfigError, match=f"'{missing}' is not set"):
            RelayConfig.from_env()

    def test_empty_required_counts_as_missing(
        self, required_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("IMAP_SERVER", "")
        with pytest.raises(ConfigError, match="IMAP_SERVER"):
            RelayConfig.from_env()

    def test_non_numeric_port(
        self, required_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("IMAP_PORT", "imaps")
        with pytest.raises(ConfigError, match="imap.port.*int"):
            RelayConfig.from_env()

    @pytest.mark.parametrize("port", ["0", "65536", "-1"])
    def test_port_out_of_range(
        self,
        required_env: None,
        monkeypatch: pytest.MonkeyPatch,
        port: str,
    ) -> None:
        monkeypatch.setenv("IMAP_PORT", port)
        with pytest.raises(ConfigError, match="1-65535"):
            RelayConfig.from_env()

    def test_http_port_out_of_range(
        self, required_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("PORT", "70000")
        with pytest.raises(ConfigError, match="http.port"):
            RelayConfig.from_env()

    def test_blank_allow_list(
        self, required_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("OTP_ALLOWED_SERVICES", " , ")
        with pytest.raises(ConfigError, match="allowed_services"):
            RelayConfig.from_env()

    def test_invalid_bool(
        self, required_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("OTP_ADVANCE_MARKER", "maybe")
        with pytest.raises(ConfigError, match="bool"):
            RelayConfig.from_env()

    def test_reads_dotenv_in_cwd(self, tmp_path: Path) -> None:
        (tmp_path / ".env").write_text(
            "IMAP_SERVER=mail.example.org\n"
            "IMAP_PORT=993\n"
            "IMAP_USERNAME=me\n"
            "IMAP_PASSWORD=pw\n"
        )
        with patch.dict(os.environ):
            config = RelayConfig.from_env()
        assert config.imap_server == "mail.example.org"

    def test_password_hidden_from_repr(self, required_env: None) -> None:
        config = RelayConfig.from_env()
        assert "s3cret-pw" not in repr(config)


class TestFromYaml:
    def test_full_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("RELAY_PW", "from-env")
        path = tmp_path / "otprelay.yaml"
        path.write_text(
            "imap:\n"
            "  server: imap.example.com\n"
            "  port: 993\n"
            "  username: relay@example.com\n"
            "  password: !env RELAY_PW\n"
            "  mailbox: Codes\n"
            "http:\n"
            "  host: 127.0.0.1\n"
            "  port: 8181\n"
            "allowed_services:\n"
            "  - ChatGPT\n"
            "  - GitHub\n"
            "code_file: ~/code.json\n"
            "advance_marker: true\n"
        )

        config = RelayConfig.from_yaml(path)

        assert config.password == "from-env"
        assert config.imap_port == 993
        assert config.mailbox == "Codes"
        assert config.http_host == "127.0.0.1"
        assert config.http_port == 8181
        assert config.allowed_services == frozenset({"ChatGPT", "GitHub"})
        assert config.code_file == Path("~/code.json").expanduser()
        assert config.advance_marker is True

    def test_missing_env_reference(self, tmp_path: Path) -> None:
        path = tmp_path / "otprelay.yaml"
        path.write_text(
            "imap:\n"
            "  server: imap.example.com\n"
            "  port: 993\n"
            "  username: relay\n"
            "  password: !env UNSET_RELAY_PW\n"
        )
        with pytest.raises(ConfigError, match="UNSET_RELAY_PW"):
            RelayConfig.from_yaml(path)

    def test_missing_literal(self, tmp_path: Path) -> None:
        path = tmp_path / "otprelay.yaml"
        path.write_text("imap:\n  server: imap.example.com\n")
        with pytest.raises(ConfigError, match="'imap.port' is missing"):
            RelayConfig.from_yaml(path)

    def test_file_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            RelayConfig.from_yaml(tmp_path / "absent.yaml")

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "otprelay.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError, match="YAML mapping"):
            RelayConfig.from_yaml(path)

    def test_section_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "otprelay.yaml"
        path.write_text("imap: imap.example.com\n")
        with pytest.raises(ConfigError, match="must be mappings"):
            RelayConfig.from_yaml(path)


class TestLoad:
    def test_explicit_path(self, tmp_path: Path) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text(
            "imap: {server: a, port: 993, username: u, password: p}\n"
        )
        assert RelayConfig.load(path).imap_server == "a"

    def test_xdg_file_preferred(
        self, required_env: None, tmp_path: Path
    ) -> None:
        xdg = get_config_path()
        xdg.write_text(
            "imap: {server: xdg, port: 993, username: u, password: p}\n"
        )
        assert RelayConfig.load().imap_server == "xdg"

    def test_falls_back_to_env(self, required_env: None) -> None:
        assert RelayConfig.load().imap_server == "imap.example.com"


class TestLoadEnvFiles:
    @pytest.fixture
    def env_files(self, tmp_path: Path) -> tuple[Path, Path]:
        xdg_env = tmp_path / "xdg-config" / ".env"
        xdg_env.write_text("IMAP_SERVER=xdg.example.org\n")
        cwd_env = tmp_path / ".env"
        cwd_env.write_text(
            "IMAP_SERVER=cwd.example.org\nIMAP_MAILBOX=Codes\n"
        )
        return xdg_env, cwd_env

    def test_xdg_file_wins_over_cwd(self, env_files: tuple[Path, Path]) -> None:
        with patch.dict(os.environ):
            load_env_files()
            assert os.environ["IMAP_SERVER"] == "xdg.example.org"
            assert os.environ["IMAP_MAILBOX"] == "Codes"

    def test_process_environment_wins(
        self,
        env_files: tuple[Path, Path],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("IMAP_SERVER", "env.example.org")
        with patch.dict(os.environ):
            load_env_files()
            assert os.environ["IMAP_SERVER"] == "env.example.org"

    def test_loads_once_until_cleared(
        self, env_files: tuple[Path, Path]
    ) -> None:
        mock_load = MagicMock()
        with patch("otprelay.config.load_dotenv", mock_load):
            load_env_files()
            load_env_files()
            assert mock_load.call_count == 2

            load_env_files.cache_clear()
            load_env_files()
        assert mock_load.call_count == 4

    def test_no_env_files(self) -> None:
        with patch("otprelay.config.load_dotenv") as mock_load:
            load_env_files()
        mock_load.assert_not_called()


class TestPaths:
    def test_paths_under_xdg_config(self, tmp_path: Path) -> None:
        assert get_config_path() == tmp_path / "xdg-config" / "otprelay.yaml"
        assert get_dotenv_path() == tmp_path / "xdg-config" / ".env"


class TestCoerceBool:
    @pytest.mark.parametrize("value", [True, "true", "1", "YES", " on "])
    def test_truthy(self, value: object) -> None:
        assert _coerce_bool(value) is True

    @pytest.mark.parametrize("value", [False, "false", "0", "No", "off"])
    def test_falsy(self, value: object) -> None:
        assert _coerce_bool(value) is False
