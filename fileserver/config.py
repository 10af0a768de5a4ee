"""Immutable runtime configuration.

A single Settings value is built at startup (CLI flags over FILESERVER_*
environment variables over defaults) and handed to every component.
"""
from __future__ import annotations

import os
import re
import socket
from pathlib import Path
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

__all__ = [
    "Settings",
    "parse_duration",
    "default_listen_address",
    "DEFAULT_MAX_UPLOAD_BYTES",
    "LOG_LEVELS",
]

DEFAULT_MAX_UPLOAD_BYTES = 32 * 1024 * 1024

# Level names uvicorn understands.
LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "TRACE"]
LOG_LEVELS: tuple[str, ...] = get_args(LogLevel)

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str | float | int) -> float:
    """Parse a duration into seconds.

    Accepts bare numbers (seconds) and Go-style strings such as "60s",
    "1m30s", "250ms" or "2h".

    Raises:
        ValueError: if the value is empty, malformed or negative.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
    else:
        raw = str(value).strip()
        if not raw:
            raise ValueError("duration must not be empty")
        try:
            seconds = float(raw)
        except ValueError:
            pos = 0
            seconds = 0.0
            for m in _DURATION_PART_RE.finditer(raw):
                if m.start() != pos:
                    break
                seconds += float(m.group(1)) * _UNIT_SECONDS[m.group(2)]
                pos = m.end()
            if pos != len(raw):
                raise ValueError(f"invalid duration {raw!r}") from None
    if seconds < 0:
        raise ValueError("duration must not be negative")
    return seconds


def default_listen_address() -> str:
    """Return the first non-loopback IPv4 address of this host, or 127.0.0.1.

    Uses a connected UDP socket to ask the kernel which interface routes
    outward; no packet is sent.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("192.0.2.1", 9))
            addr = s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    return addr if addr and not addr.startswith("127.") else "127.0.0.1"


def _env(name: str, default: str | None = None) -> str | None:
    return os.getenv(f"FILESERVER_{name}", default)


class Settings(BaseModel):
    """Server configuration, frozen once built."""

    model_config = ConfigDict(frozen=True)

    data_dir: Path = Field(default_factory=lambda: Path.cwd() / "data")
    upload_dir: Path
    host: str = "127.0.0.1"
    port: int = Field(1234, ge=0, le=65535)
    tls: bool = True
    tls_self_signed: bool = True
    tls_cert_path: Path = Field(default_factory=lambda: Path.cwd() / "cert.pem")
    tls_key_path: Path = Field(default_factory=lambda: Path.cwd() / "cert.key")
    tls_common_name: str = "fileserver.localdomain"
    tls_organization: str = "fileserver"
    tls_self_signed_ca: bool = True
    shutdown_timeout: float = Field(60.0, gt=0)
    max_upload_bytes: int = Field(DEFAULT_MAX_UPLOAD_BYTES, gt=0)
    upload_field: str = Field("originalFile", min_length=1)
    # Redirect target for misses under "/"; None answers 404.
    root_fallback: str | None = None
    log_level: LogLevel = "INFO"

    @field_validator("shutdown_timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, v: object) -> float:
        return parse_duration(v)  # type: ignore[arg-type]

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, v: object) -> object:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("root_fallback", mode="before")
    @classmethod
    def _empty_fallback(cls, v: object) -> object:
        # FILESERVER_ROOT_FALLBACK="" switches the redirect off
        return None if v == "" else v

    @field_validator("data_dir", "upload_dir", "tls_cert_path", "tls_key_path", mode="after")
    @classmethod
    def _normalize_path(cls, v: Path) -> Path:
        return Path(os.path.normpath(v))

    @model_validator(mode="before")
    @classmethod
    def _default_upload_dir(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("upload_dir") in (None, ""):
            data_dir = data.get("data_dir") or Path.cwd() / "data"
            data = {**data, "upload_dir": Path(data_dir) / "uploads"}
        return data

    @property
    def scheme(self) -> str:
        return "https" if self.tls else "http"

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    @classmethod
    def env_defaults(cls) -> dict[str, str]:
        """Collect FILESERVER_* overrides present in the environment."""
        names = {
            "data_dir": "DATA_DIR",
            "upload_dir": "UPLOAD_DIR",
            "host": "ADDRESS",
            "port": "PORT",
            "tls": "TLS",
            "tls_self_signed": "TLS_SELF_SIGNED",
            "tls_cert_path": "TLS_CERT_PATH",
            "tls_key_path": "TLS_KEY_PATH",
            "tls_common_name": "TLS_COMMON_NAME",
            "tls_organization": "TLS_ORGANIZATION",
            "tls_self_signed_ca": "TLS_SELF_SIGNED_CA",
            "shutdown_timeout": "TIMEOUT",
            "max_upload_bytes": "MAX_UPLOAD_BYTES",
            "upload_field": "UPLOAD_FIELD",
            "root_fallback": "ROOT_FALLBACK",
            "log_level": "LOG_LEVEL",
        }
        out: dict[str, str] = {}
        for field, env_name in names.items():
            val = _env(env_name)
            if val is not None:
                out[field] = val
        return out
