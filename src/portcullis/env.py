import logging
import os

from .types import DEFAULT_BASE_URL, DEFAULT_REFRESH_ENDPOINT, ClientSettings

DEFAULT_PREFIX = "PORTCULLIS_"


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":  # noqa: PLR2004
        return value[1:-1]
    # unquoted values may carry a trailing " # comment"
    return value.split(" #", 1)[0].rstrip()


def _read_env_file(env_path: str) -> dict[str, str]:
    """KEY=VALUE pairs from a dotenv file; os.environ is left untouched.

    Accepts an optional ``export`` prefix, matching surrounding quotes and
    trailing comments on unquoted values. Lines without ``=`` are skipped.
    """
    try:
        with open(env_path) as f:
            lines = f.read().splitlines()
    except FileNotFoundError:
        return {}
    values: dict[str, str] = {}
    for line in lines:
        line = line.strip()
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        key, sep, raw = line.partition("=")
        key = key.strip()
        if not sep or not key or key.startswith("#"):
            continue
        values[key] = _unquote(raw.strip())
    return values


def _parse_log_level(raw: str | None) -> int | None:
    if not raw:
        return None
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level {raw!r}")
    return level


def load_settings_from_env(
    env_path: str | None = None,
    prefix: str = DEFAULT_PREFIX,
    **overrides,
) -> ClientSettings:
    """Build ClientSettings from environment variables.

    Reads ``<prefix>API_BASE_URL``, ``<prefix>REFRESH_ENDPOINT``,
    ``<prefix>TRANSPORT_TIMEOUT`` (seconds) and ``<prefix>LOG_LEVEL``.
    Values in the actual environment take precedence over the .env file;
    keyword ``overrides`` take precedence over both.
    """
    file_env = _read_env_file(env_path) if env_path else {}
    env_map: dict[str, str] = {**file_env, **os.environ}

    def get(name: str) -> str | None:
        return env_map.get(f"{prefix}{name}") or None

    timeout_raw = get("TRANSPORT_TIMEOUT")
    try:
        timeout = float(timeout_raw) if timeout_raw else ClientSettings.transport_timeout
    except ValueError as e:
        raise ValueError(f"{prefix}TRANSPORT_TIMEOUT must be a number, got {timeout_raw!r}") from e

    values = {
        "base_url": get("API_BASE_URL") or DEFAULT_BASE_URL,
        "refresh_endpoint": get("REFRESH_ENDPOINT") or DEFAULT_REFRESH_ENDPOINT,
        "transport_timeout": timeout,
        "log_level": _parse_log_level(get("LOG_LEVEL")),
    }
    values.update(overrides)
    return ClientSettings(**values)
