from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import BinaryIO

from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException
from starlette.requests import ClientDisconnect, Request
from starlette.types import Message, Receive

from ..domain.paths import PathError, clean
from ..logging_conf import get_logger

__all__ = [
    "CHUNK_SIZE",
    "UploadError",
    "FormParseError",
    "MissingFieldError",
    "UnsafeFilenameError",
    "UploadTooLargeError",
    "StorageError",
    "receive",
]

logger = get_logger("service.upload")

CHUNK_SIZE = 64 * 1024


# ------------------------
# Errors
# ------------------------
class UploadError(Exception):
    """Base class for per-request upload failures.

    `code` is a stable machine code and `status_code` the HTTP status the
    route answers with.
    """

    code: str = "upload_failed"
    status_code: int = 400


class FormParseError(UploadError):
    code = "form_parse_error"


class MissingFieldError(UploadError):
    code = "missing_field"


class UnsafeFilenameError(UploadError):
    code = "unsafe_filename"

    def __init__(self, filename: str, cause: PathError) -> None:
        super().__init__(f"rejected filename {filename!r}: {cause}")
        self.filename = filename
        self.reason = cause.code


class UploadTooLargeError(UploadError):
    code = "too_large"
    status_code = 413


class StorageError(UploadError):
    code = "storage_error"
    status_code = 500


# ------------------------
# Internals
# ------------------------

def _declared_length(request: Request) -> int | None:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


class _BoundedReceive:
    """ASGI receive wrapper that stops the body once it passes `max_bytes`.

    Chunked requests carry no Content-Length, so the multipart parser is fed
    through this to keep it from spooling an unbounded body to disk.
    """

    def __init__(self, receive: Receive, max_bytes: int) -> None:
        self._receive = receive
        self.max_bytes = max_bytes
        self.consumed = 0

    async def __call__(self) -> Message:
        message = await self._receive()
        if message["type"] == "http.request":
            self.consumed += len(message.get("body", b""))
            if self.consumed > self.max_bytes:
                raise UploadTooLargeError(f"request body exceeds {self.max_bytes} bytes")
        return message


async def _copy_bounded(src: UploadFile, dst: BinaryIO, max_bytes: int) -> int:
    written = 0
    while True:
        chunk = await src.read(CHUNK_SIZE)
        if not chunk:
            return written
        written += len(chunk)
        if written > max_bytes:
            raise UploadTooLargeError(f"upload exceeds {max_bytes} bytes")
        await run_in_threadpool(dst.write, chunk)


async def _store(src: UploadFile, target: Path, max_bytes: int) -> int:
    """Stream `src` into a scratch file beside `target`, then swap it in.

    `target` is only replaced once the whole upload is on disk, so a
    rejected upload leaves any previous file of that name untouched.
    """
    try:
        fd, scratch_name = await run_in_threadpool(
            tempfile.mkstemp, dir=target.parent, prefix=".upload-", suffix=".part"
        )
    except OSError as e:
        raise StorageError(f"cannot create {target.name}: {e.strerror or e}") from e
    scratch = Path(scratch_name)
    dst = os.fdopen(fd, "wb")
    try:
        size = await _copy_bounded(src, dst, max_bytes)
        await run_in_threadpool(dst.close)
        await run_in_threadpool(os.replace, scratch, target)
    except OSError as e:
        raise StorageError(f"cannot write {target.name}: {e.strerror or e}") from e
    finally:
        if not dst.closed:
            await run_in_threadpool(dst.close)
        await run_in_threadpool(_unlink_quietly, scratch)
    return size


def _unlink_quietly(path: Path) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


# ------------------------
# Use-case
# ------------------------

async def receive(
    request: Request,
    *,
    upload_dir: Path,
    field_name: str,
    max_bytes: int,
) -> Path:
    """Persist the file in multipart field `field_name` under `upload_dir`.

    The client filename is sanitized before any path is built; an existing
    file with the same name is overwritten. Concurrent uploads of one name
    are not serialized, the last writer wins.

    The body is bounded by `max_bytes` twice: a declared Content-Length is
    checked up front, and the bytes fed to the form parser are counted.

    Raises:
        UploadError: one of its subclasses, for any per-request failure.
    """
    declared = _declared_length(request)
    if declared is not None and declared > max_bytes:
        raise UploadTooLargeError(f"request body of {declared} bytes exceeds {max_bytes}")

    bounded = Request(request.scope, receive=_BoundedReceive(request.receive, max_bytes))
    try:
        form = await bounded.form(max_files=1, max_fields=16)
    except HTTPException as e:
        # Starlette re-raises MultiPartException as a 400 inside an app.
        raise FormParseError(f"cannot parse multipart form: {e.detail}") from e
    except (MultiPartException, ClientDisconnect, ValueError) as e:
        raise FormParseError(f"cannot parse multipart form: {e}") from e

    try:
        upload = form.get(field_name)
        if not isinstance(upload, UploadFile):
            raise MissingFieldError(f"missing file field {field_name!r}")

        raw_name = upload.filename or ""
        try:
            segment = clean(raw_name)
        except PathError as e:
            logger.warning(
                "upload.rejected",
                extra={"event": "upload_rejected", "upload_name": raw_name, "reason": e.code},
            )
            raise UnsafeFilenameError(raw_name, e) from e

        target = upload_dir / segment
        size = await _store(upload, target, max_bytes)
    finally:
        await form.close()

    logger.info(
        "upload.stored",
        extra={"event": "upload_stored", "upload_name": segment, "bytes": size},
    )
    return target
