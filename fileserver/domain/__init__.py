"""Pure domain logic: path sanitizing, certificates, shutdown state.

Nothing here knows about FastAPI or HTTP so it can be unit-tested on its own.
"""
__all__ = ["paths", "certs", "shutdown"]
