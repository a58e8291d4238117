"""Configuration helpers and .env loading for httpsource."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Mapping, Optional

from dotenv import load_dotenv

from .connection import DEFAULT_CONNECT_TIMEOUT, DEFAULT_MAX_REDIRECTS, DEFAULT_READ_TIMEOUT
from .validator import DEFAULT_MAX_ERROR_BODY_BYTES

DEFAULT_ENV_FILES: tuple[Path, ...] = (
    Path(".env"),
    Path("config/.env"),
)

DEFAULT_USER_AGENT = "httpsource/0.1"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@lru_cache(maxsize=1)
def load_environment(*, extra_files: Iterable[Path] | None = None) -> dict[str, str]:
    """Load environment variables from .env files once per process."""

    candidates = list(DEFAULT_ENV_FILES)
    if extra_files:
        candidates = [*candidates, *extra_files]

    for path in candidates:
        try:
            if path.exists():
                load_dotenv(path, override=False)
        except OSError:
            continue

    load_dotenv(override=False)
    return dict(os.environ)


def _float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number; received {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive; received {raw!r}")
    return value


def _int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer; received {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative; received {raw!r}")
    return value


def _bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean; received {raw!r}")


@dataclass(frozen=True)
class HttpSourceSettings:
    """Runtime settings for data sources built from the environment."""

    user_agent: Optional[str] = DEFAULT_USER_AGENT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    allow_cross_protocol_redirects: bool = False
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    max_error_body_bytes: int = DEFAULT_MAX_ERROR_BODY_BYTES

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "HttpSourceSettings":
        """Read ``HTTPSOURCE_*`` variables, falling back to the defaults."""

        env = os.environ if environ is None else environ
        user_agent = env.get("HTTPSOURCE_USER_AGENT", DEFAULT_USER_AGENT) or None
        return cls(
            user_agent=user_agent,
            connect_timeout=_float(env, "HTTPSOURCE_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT),
            read_timeout=_float(env, "HTTPSOURCE_READ_TIMEOUT", DEFAULT_READ_TIMEOUT),
            allow_cross_protocol_redirects=_bool(
                env, "HTTPSOURCE_ALLOW_CROSS_PROTOCOL_REDIRECTS", False
            ),
            max_redirects=_int(env, "HTTPSOURCE_MAX_REDIRECTS", DEFAULT_MAX_REDIRECTS),
            max_error_body_bytes=_int(
                env, "HTTPSOURCE_MAX_ERROR_BODY_BYTES", DEFAULT_MAX_ERROR_BODY_BYTES
            ),
        )


__all__ = [
    "DEFAULT_ENV_FILES",
    "DEFAULT_USER_AGENT",
    "HttpSourceSettings",
    "load_environment",
]
