#!/usr/bin/env python3
"""End-to-end smoke check against a running file server.

Steps:
- wait for server health
- upload a small file and read it back from /uploads/
- confirm a traversal filename is refused
- confirm an unknown path is not found
- log a compact summary and exit non-zero on any failure
"""
from __future__ import annotations

import asyncio
import sys
from uuid import uuid4

import httpx

from fileserver.logging_conf import get_logger, setup_logging
from runner.cli import parse_args
from runner.client import fetch_upload, upload, upload_ok, wait_for_health
from runner.types import Check, SmokeError

logger = get_logger("runner")


async def _roundtrip(client: httpx.AsyncClient) -> Check:
    name = f"smoke-{uuid4().hex[:12]}.txt"
    payload = f"smoke {name}\n".encode()
    try:
        await upload_ok(client, name, payload)
        got = await fetch_upload(client, name)
    except SmokeError as e:
        return Check("roundtrip", False, str(e))
    if got != payload:
        return Check("roundtrip", False, "content mismatch")
    return Check("roundtrip", True, name)


async def _traversal_refused(client: httpx.AsyncClient) -> Check:
    r = await upload(client, "../smoke-escape.txt", b"nope\n")
    return Check("traversal_refused", r.status_code == 400, f"status {r.status_code}")


async def _unknown_not_found(client: httpx.AsyncClient) -> Check:
    r = await client.get(f"/uploads/missing-{uuid4().hex}")
    return Check("unknown_not_found", r.status_code == 404, f"status {r.status_code}")


async def run_smoke(
    *,
    base_url: str,
    timeout_s: float = 20.0,
    verify: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    async with httpx.AsyncClient(
        base_url=base_url, verify=verify, timeout=10.0, transport=transport
    ) as client:
        await wait_for_health(client, timeout_s)
        checks = [
            await _roundtrip(client),
            await _traversal_refused(client),
            await _unknown_not_found(client),
        ]

    failed = [c for c in checks if not c.ok]
    logger.info(
        "runner.summary",
        extra={
            "component": "runner",
            "event": "summary",
            "checks": {c.name: {"ok": c.ok, "detail": c.detail} for c in checks},
            "failed": len(failed),
        },
    )
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> None:
    setup_logging()
    args = parse_args(sys.argv[1:] if argv is None else argv)
    code = asyncio.run(run_smoke(base_url=args.base_url, timeout_s=args.timeout, verify=args.verify))
    raise SystemExit(code)


if __name__ == "__main__":
    main()
