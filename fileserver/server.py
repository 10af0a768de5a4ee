"""Process bootstrap: directories, TLS, uvicorn and the shutdown coordinator.

Everything that can fail here fails before the listener is bound and is
reported as a StartupError.
"""
from __future__ import annotations

import asyncio
import contextlib
import ssl
from collections.abc import Iterator

import uvicorn
from fastapi import FastAPI

from .config import Settings
from .domain.certs import CertificateError, generate_self_signed
from .domain.shutdown import ShutdownCoordinator
from .logging_conf import get_logger
from .main import create_app

__all__ = [
    "StartupError",
    "Server",
    "prepare_directories",
    "build_config",
    "run",
]

logger = get_logger("server")

DIR_MODE = 0o700


class StartupError(RuntimeError):
    """Fatal misconfiguration; the process exits before serving."""


class Server(uvicorn.Server):
    """uvicorn server whose signal handling is left to ShutdownCoordinator."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def prepare_directories(settings: Settings) -> None:
    """Create the data and uploads roots (owner-only) if they are missing."""
    for path in (settings.data_dir, settings.upload_dir):
        try:
            path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        except OSError as e:
            raise StartupError(f"cannot create directory {path}: {e.strerror or e}") from e
        if not path.is_dir():
            raise StartupError(f"not a directory: {path}")


def build_config(settings: Settings, app: FastAPI) -> uvicorn.Config:
    """Build and load the uvicorn config, including TLS material.

    With self-signed TLS a fresh in-memory certificate is generated and
    installed as the listener's SSLContext. Otherwise the configured cert
    and key files are handed to uvicorn, which loads and validates them.
    """
    kwargs: dict = {}
    if settings.tls and not settings.tls_self_signed:
        kwargs["ssl_certfile"] = str(settings.tls_cert_path)
        kwargs["ssl_keyfile"] = str(settings.tls_key_path)

    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=settings.shutdown_timeout,
        **kwargs,
    )
    try:
        config.load()
    except (OSError, ssl.SSLError) as e:
        raise StartupError(f"cannot load TLS certificate/key: {e}") from e

    if settings.tls and settings.tls_self_signed:
        try:
            cert = generate_self_signed(
                settings.tls_common_name,
                settings.tls_organization,
                host=settings.host,
                is_ca=settings.tls_self_signed_ca,
            )
            config.ssl = cert.ssl_context()
        except CertificateError as e:
            raise StartupError(str(e)) from e
        logger.info(
            "tls.self_signed",
            extra={
                "event": "tls_self_signed",
                "common_name": cert.common_name,
                "serial_number": str(cert.serial_number),
                "not_after": cert.not_after.isoformat(),
            },
        )
    return config


def run(settings: Settings) -> None:
    """Serve until interrupted; returns once the drain has finished."""
    prepare_directories(settings)
    app = create_app(settings)
    config = build_config(settings, app)
    server = Server(config)
    coordinator = ShutdownCoordinator(server, timeout=settings.shutdown_timeout)

    logger.info("Serving files from %s", settings.data_dir)
    logger.info("Uploaded files stored in %s", settings.upload_dir)
    logger.info("Listening at %s", settings.url, extra={"event": "listening", "url": settings.url})

    asyncio.run(coordinator.run())
    logger.info("Done.", extra={"event": "done", "forced": coordinator.forced})
