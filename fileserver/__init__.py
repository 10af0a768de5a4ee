"""Static file server with uploads, self-signed TLS and graceful shutdown.

The package version resolves from the installed distribution metadata.
"""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("fileserver")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
