"""Static roots mounted under distinct URL prefixes.

Each mount is served by its own StaticFiles instance, which resolves request
paths against that mount's directory only and refuses anything that would
land outside it (symlinks included). Client paths here may span several
segments, so they are not run through paths.clean(); that is reserved for
single names such as upload filenames.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import RedirectResponse
from starlette.exceptions import HTTPException
from starlette.staticfiles import StaticFiles
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..logging_conf import get_logger

__all__ = [
    "MountConfigError",
    "RootMount",
    "NotFoundRedirect",
    "MountTable",
]

logger = get_logger("api.mounts")

# Characters the router treats as parameter / wildcard syntax.
_RESERVED_CHARS = set("{}*")


class MountConfigError(ValueError):
    """Raised while building mounts; always a startup-time error."""


@dataclass(frozen=True)
class RootMount:
    """A URL prefix bound to one filesystem root (or packaged asset dir)."""

    prefix: str
    directory: Path | None = None
    packages: tuple[str | tuple[str, str], ...] = ()
    fallback: str | None = None

    @property
    def name(self) -> str:
        return self.prefix.strip("/") or "root"

    def static_app(self) -> ASGIApp:
        files = StaticFiles(
            directory=self.directory,
            packages=list(self.packages) or None,
            html=True,
            check_dir=True,
        )
        if self.fallback is None:
            return files
        return NotFoundRedirect(files, location=self.fallback)


class NotFoundRedirect:
    """ASGI decorator turning a 404 from the wrapped app into a redirect.

    The wrapped app's response start is held back until its status is known.
    For a 404 neither the start nor any body is forwarded; a redirect to
    `location` goes out instead. Starlette's StaticFiles signals a miss by
    raising HTTPException(404), which is handled the same way.
    """

    def __init__(self, app: ASGIApp, location: str, status_code: int = 302) -> None:
        self.app = app
        self.location = location
        self.status_code = status_code

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        not_found = False

        async def intercept(message: Message) -> None:
            nonlocal not_found
            if message["type"] == "http.response.start" and message["status"] == 404:
                not_found = True
                return
            if not_found:
                # swallow the 404 body
                return
            await send(message)

        try:
            await self.app(scope, receive, intercept)
        except HTTPException as exc:
            if exc.status_code != 404:
                raise
            not_found = True

        if not_found:
            logger.info(
                "mount.fallback",
                extra={"event": "mount_fallback", "path": scope.get("path"), "location": self.location},
            )
            response = RedirectResponse(self.location, status_code=self.status_code)
            await response(scope, receive, send)


@dataclass
class MountTable:
    """Collects RootMounts and installs them onto an application."""

    mounts: list[RootMount] = field(default_factory=list)

    def mount(
        self,
        prefix: str,
        directory: str | Path | None = None,
        *,
        packages: list[str | tuple[str, str]] | None = None,
        fallback: str | None = None,
    ) -> RootMount:
        """Register `directory` (or packaged assets) under `prefix`.

        Raises:
            MountConfigError: the prefix is not absolute, uses router
                parameter syntax, or is already mounted; or no root was given.
        """
        if not prefix.startswith("/"):
            raise MountConfigError(f"mount prefix must start with '/': {prefix!r}")
        if _RESERVED_CHARS & set(prefix):
            raise MountConfigError(f"mount prefix may not contain URL parameters: {prefix!r}")
        if directory is None and not packages:
            raise MountConfigError(f"mount {prefix!r} needs a directory or packages")

        normalized = prefix.rstrip("/") or "/"
        if any(m.prefix == normalized for m in self.mounts):
            raise MountConfigError(f"prefix already mounted: {normalized!r}")

        mount = RootMount(
            prefix=normalized,
            directory=Path(directory) if directory is not None else None,
            packages=tuple(packages or ()),
            fallback=fallback,
        )
        self.mounts.append(mount)
        return mount

    def match(self, path: str) -> RootMount | None:
        """The mount that serves `path`, longest prefix first."""
        for m in sorted(self.mounts, key=lambda m: len(m.prefix), reverse=True):
            if m.prefix == "/" or path == m.prefix or path.startswith(m.prefix + "/"):
                return m
        return None

    def install(self, app: FastAPI) -> None:
        """Attach every mount, most specific prefix first.

        A non-root prefix asked for without its trailing slash is answered
        with a permanent redirect to the slashed form.
        """
        for m in sorted(self.mounts, key=lambda m: len(m.prefix), reverse=True):
            if m.prefix != "/":
                app.add_api_route(
                    m.prefix,
                    _slash_redirect(m.prefix + "/"),
                    methods=["GET", "HEAD"],
                    include_in_schema=False,
                )
            app.mount(m.prefix, m.static_app(), name=m.name)
            logger.info(
                "mount.installed",
                extra={
                    "event": "mount_installed",
                    "prefix": m.prefix,
                    "directory": str(m.directory) if m.directory else None,
                    "fallback": m.fallback,
                },
            )


def _slash_redirect(location: str):
    async def redirect() -> RedirectResponse:
        return RedirectResponse(location, status_code=301)

    return redirect
