from __future__ import annotations

import asyncio
import time

import httpx

from fileserver.logging_conf import get_logger
from runner.types import FetchError, SmokeError, UploadError

logger = get_logger("runner.client")

UPLOAD_FIELD = "originalFile"


async def wait_for_health(client: httpx.AsyncClient, timeout_s: float = 20.0) -> None:
    """Ping /health until it returns ok or raise after a timeout."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        try:
            r = await client.get("/health")
            if r.status_code == 200 and r.json().get("ok") is True:
                logger.info("health.ok", extra={"event": "health_ok"})
                return
        except httpx.HTTPError:
            pass
        await asyncio.sleep(0.25)
    raise SmokeError("Health check did not pass within timeout")


async def upload(client: httpx.AsyncClient, filename: str, data: bytes) -> httpx.Response:
    """POST one file to /uploadFile and return the raw response."""
    files = {UPLOAD_FIELD: (filename, data, "application/octet-stream")}
    r = await client.post("/uploadFile", files=files)
    logger.info(
        "upload.sent",
        extra={"event": "upload_sent", "upload_name": filename, "status_code": r.status_code},
    )
    return r


async def upload_ok(client: httpx.AsyncClient, filename: str, data: bytes) -> None:
    """Upload a file that must be accepted."""
    r = await upload(client, filename, data)
    if r.status_code != 200:
        raise UploadError(f"upload of {filename} failed: {r.status_code} {r.text.strip()}")


async def fetch_upload(client: httpx.AsyncClient, filename: str) -> bytes:
    """Read a previously uploaded file back from /uploads/."""
    r = await client.get(f"/uploads/{filename}")
    if r.status_code != 200:
        raise FetchError(f"GET /uploads/{filename} returned {r.status_code}")
    return r.content
