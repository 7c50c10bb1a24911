# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the OTP relay.

Configuration is sourced from environment variables by default:

    ``IMAP_SERVER``, ``IMAP_PORT``, ``IMAP_USERNAME``, ``IMAP_PASSWORD``
        Mailbox connection (required).
    ``PORT``
        HTTP listen port (default 8080).
    ``HTTP_HOST``
        HTTP bind address (default ``0.0.0.0``).
    ``IMAP_MAILBOX``
        Mailbox to watch (default ``INBOX``).
    ``OTP_ALLOWED_SERVICES``
        Comma-separated service names accepted by the extractor
        (default ``ChatGPT``).
    ``OTP_CODE_FILE``
        Path of the persisted latest code (default ``code.json``).
    ``OTP_ADVANCE_MARKER``
        Advance the sequence marker after each poll (default false).

A ``.env`` file is loaded first if present.  Alternatively, settings can be
given in a YAML file (``$XDG_CONFIG_HOME/otprelay/otprelay.yaml`` or an
explicit path) where ``!env`` tags resolve values from the environment::

    imap:
      server: imap.example.com
      port: 993
      username: !env IMAP_USERNAME
      password: !env IMAP_PASSWORD
    http:
      port: 8080
    allowed_services: [ChatGPT]
"""

import functools
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from platformdirs import user_config_path


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "otprelay"

DEFAULT_HTTP_HOST = "0.0.0.0"
DEFAULT_HTTP_PORT = 8080
DEFAULT_MAILBOX = "INBOX"
DEFAULT_ALLOWED_SERVICES = frozenset({"ChatGPT"})
DEFAULT_CODE_FILE = Path("code.json")

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})


def get_config_path() -> Path:
    """Return the default YAML config path.

    Uses XDG: ``$XDG_CONFIG_HOME/otprelay/otprelay.yaml`` (typically
    ``~/.config/otprelay/otprelay.yaml``).
    """
    return user_config_path(_APP_NAME) / "otprelay.yaml"


def get_dotenv_path() -> Path:
    """Return the ``.env`` path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


@functools.cache
def load_env_files() -> None:
    """Populate the environment from ``.env`` files, once per process.

    The XDG file is read before the one in the working directory.  Neither
    replaces a variable that is already set, so the process environment
    wins over the XDG file, which wins over the working directory.
    """
    for path in (get_dotenv_path(), Path.cwd() / ".env"):
        if path.is_file():
            load_dotenv(path)
            logger.debug("Loaded .env from %s", path)


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


def _env_layout() -> dict[str, Any]:
    """Raw config mapping that reads every setting from the environment.

    Mirrors the YAML layout so both sources share one parser.
    """
    return {
        "imap": {
            "server": _EnvVar("IMAP_SERVER"),
            "port": _EnvVar("IMAP_PORT"),
            "username": _EnvVar("IMAP_USERNAME"),
            "password": _EnvVar("IMAP_PASSWORD"),
            "mailbox": _EnvVar("IMAP_MAILBOX"),
        },
        "http": {
            "host": _EnvVar("HTTP_HOST"),
            "port": _EnvVar("PORT"),
        },
        "allowed_services": _EnvVar("OTP_ALLOWED_SERVICES"),
        "code_file": _EnvVar("OTP_CODE_FILE"),
        "advance_marker": _EnvVar("OTP_ADVANCE_MARKER"),
    }


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None, or the env var is unset or empty.
    """
    if isinstance(value, _EnvVar):
        raw = os.environ.get(value.var_name)
        if not raw:
            return None
        return raw
    if value is None:
        return None
    return str(value)


_MISSING = object()


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    name: str,
    default: object = _MISSING,
    required: bool = False,
) -> Any:
    """Resolve a raw config value, handling ``!env`` tags and coercion.

    Args:
        value: Raw value (``_EnvVar``, None, or a literal parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``bool``, ``Path``).
        name: Dotted field name used in error messages.
        default: Default when the value is absent.
        required: Raise ``ConfigError`` when the value is absent.

    Returns:
        The resolved, coerced value, or None when optional and absent.

    Raises:
        ConfigError: If a required value is missing or coercion fails.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)

    if resolved is None:
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{name}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{name}' is missing")
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    if coerce is Path:
        return Path(resolved).expanduser()
    try:
        return coerce(resolved)
    except ValueError:
        raise ConfigError(
            f"Config '{name}' must be of type {coerce.__name__}, "
            f"got {resolved!r}"
        )


def _resolve_services(value: object) -> frozenset[str]:
    """Resolve the service allow-list.

    Accepts a YAML list or a comma-separated string (``!env`` allowed for
    either the whole value or individual list items).
    """
    if isinstance(value, list):
        items = [_raw_resolve(item) or "" for item in value]
    else:
        raw = _raw_resolve(value)
        if raw is None:
            return DEFAULT_ALLOWED_SERVICES
        items = raw.split(",")

    services = frozenset(item.strip() for item in items if item.strip())
    if not services:
        raise ConfigError("Config 'allowed_services' must not be empty")
    return services


def _check_port(port: int, name: str) -> None:
    if not 1 <= port <= 65535:
        raise ConfigError(f"Config '{name}' must be in 1-65535, got {port}")


# ---------------------------------------------------------------------------
# Relay configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RelayConfig:
    """Complete relay configuration.

    Attributes:
        imap_server: IMAP server hostname.
        imap_port: IMAP server port (implicit TLS).
        username: IMAP login name.
        password: IMAP password.
        mailbox: Mailbox to select and watch.
        http_host: Bind address for the HTTP responder.
        http_port: Listen port for the HTTP responder.
        allowed_services: Service names accepted by the extractor.
        code_file: File holding the persisted latest code.
        advance_marker: Advance the sequence marker after each poll instead
            of keeping the startup boundary.
    """

    imap_server: str
    imap_port: int
    username: str
    password: str = field(repr=False)
    mailbox: str = DEFAULT_MAILBOX
    http_host: str = DEFAULT_HTTP_HOST
    http_port: int = DEFAULT_HTTP_PORT
    allowed_services: frozenset[str] = DEFAULT_ALLOWED_SERVICES
    code_file: Path = DEFAULT_CODE_FILE
    advance_marker: bool = False

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ConfigError: If a value is out of range.
        """
        _check_port(self.imap_port, "imap.port")
        _check_port(self.http_port, "http.port")
        if not self.allowed_services:
            raise ConfigError("Config 'allowed_services' must not be empty")

    @classmethod
    def load(cls, config_path: Path | None = None) -> "RelayConfig":
        """Load configuration from the best available source.

        An explicit path is always read as YAML.  Otherwise the XDG config
        file is used when it exists, and the environment when it does not.

        Raises:
            ConfigError: If required values are missing or invalid.
        """
        if config_path is not None:
            return cls.from_yaml(config_path)
        default_path = get_config_path()
        if default_path.exists():
            return cls.from_yaml(default_path)
        return cls.from_env()

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """Load configuration from environment variables.

        Raises:
            ConfigError: If required variables are missing or invalid.
        """
        load_env_files()
        config = cls._from_raw(_env_layout())
        logger.debug("Loaded configuration from environment")
        return config

    @classmethod
    def from_yaml(cls, config_path: Path) -> "RelayConfig":
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time.  A ``.env`` file is loaded first if
        present.

        Raises:
            ConfigError: If the file is missing or values are invalid.
        """
        load_env_files()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            raw = yaml.load(f, Loader=_make_loader())

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        config = cls._from_raw(raw)
        logger.debug("Loaded configuration from %s", config_path)
        return config

    @classmethod
    def _from_raw(cls, raw: dict) -> "RelayConfig":
        """Build config from a parsed (but unresolved) mapping."""
        imap = raw.get("imap") or {}
        http = raw.get("http") or {}
        if not isinstance(imap, dict) or not isinstance(http, dict):
            raise ConfigError("'imap' and 'http' must be mappings")

        return cls(
            imap_server=_resolve(
                imap.get("server"), str, name="imap.server", required=True
            ),
            imap_port=_resolve(
                imap.get("port"), int, name="imap.port", required=True
            ),
            username=_resolve(
                imap.get("username"), str, name="imap.username", required=True
            ),
            password=_resolve(
                imap.get("password"), str, name="imap.password", required=True
            ),
            mailbox=_resolve(
                imap.get("mailbox"),
                str,
                name="imap.mailbox",
                default=DEFAULT_MAILBOX,
            ),
            http_host=_resolve(
                http.get("host"),
                str,
                name="http.host",
                default=DEFAULT_HTTP_HOST,
            ),
            http_port=_resolve(
                http.get("port"),
                int,
                name="http.port",
                default=DEFAULT_HTTP_PORT,
            ),
            allowed_services=_resolve_services(raw.get("allowed_services")),
            code_file=_resolve(
                raw.get("code_file"),
                Path,
                name="code_file",
                default=DEFAULT_CODE_FILE,
            ),
            advance_marker=_resolve(
                raw.get("advance_marker"),
                bool,
                name="advance_marker",
                default=False,
            ),
        )
