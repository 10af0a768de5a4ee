from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from pydantic import ValidationError

from .config import LOG_LEVELS, Settings, default_listen_address
from .logging_conf import get_logger, setup_logging
from .server import StartupError, run

logger = get_logger("cli")


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line flags; unset flags fall back to FILESERVER_* env vars."""
    parser = argparse.ArgumentParser(
        prog="fileserver",
        description="Serve a directory over HTTP(S) and accept uploads.",
        argument_default=argparse.SUPPRESS,
    )
    parser.add_argument("--dataDir", dest="data_dir", type=Path, help="directory to serve from")
    parser.add_argument("--uploadDir", dest="upload_dir", type=Path, help="directory to upload to")
    parser.add_argument("--address", dest="host", help="address to listen on")
    parser.add_argument("--port", type=int, help="port to listen on")
    parser.add_argument("--tls", action=argparse.BooleanOptionalAction, help="host with tls")
    parser.add_argument(
        "--tls-self-signed",
        dest="tls_self_signed",
        action=argparse.BooleanOptionalAction,
        help="use a generated self-signed cert/key",
    )
    parser.add_argument("--tls-cert-path", dest="tls_cert_path", type=Path, help="tls cert if not self-signed")
    parser.add_argument("--tls-key-path", dest="tls_key_path", type=Path, help="tls key if not self-signed")
    parser.add_argument(
        "--timeout",
        dest="shutdown_timeout",
        help="maximum time to wait for a clean shutdown (e.g. 60s, 1m30s)",
    )
    parser.add_argument(
        "--tls-self-signed-ca",
        dest="tls_self_signed_ca",
        action=argparse.BooleanOptionalAction,
        help="mark the generated certificate as its own CA",
    )
    parser.add_argument("--tls-common-name", dest="tls_common_name", help="common name of the generated cert")
    parser.add_argument("--tls-organization", dest="tls_organization", help="organization of the generated cert")
    parser.add_argument("--max-upload-bytes", dest="max_upload_bytes", type=int, help="largest accepted upload")
    parser.add_argument("--upload-field", dest="upload_field", help="multipart field carrying the file")
    parser.add_argument("--root-fallback", dest="root_fallback", help="redirect target for misses under /")
    parser.add_argument("--log-level", dest="log_level", help=", ".join(LOG_LEVELS))
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    values: dict = {"host": default_listen_address()}
    values.update(Settings.env_defaults())
    values.update(vars(args))
    try:
        return Settings(**values)
    except ValidationError as e:
        raise StartupError(f"invalid configuration: {e}") from e


def main(argv: list[str] | None = None) -> None:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    level = vars(args).get("log_level") or os.getenv("FILESERVER_LOG_LEVEL")
    if level:
        setup_logging(level)
    else:
        setup_logging()
    try:
        settings = build_settings(args)
        run(settings)
    except StartupError as e:
        logger.error("startup.failed", extra={"event": "startup_failed", "error": str(e)})
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
