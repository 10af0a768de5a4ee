from __future__ import annotations

import json
import logging

import pytest
from fastapi.testclient import TestClient

from fileserver.api.mounts import MountTable
from fileserver.config import Settings
from fileserver.logging_conf import JsonFormatter


def test_formatter_merges_extra_and_uses_record_time() -> None:
    record = logging.LogRecord("app", logging.INFO, __file__, 1, "upload.stored", None, None)
    record.created = 0.0
    record.upload_name = "a.txt"
    line = json.loads(JsonFormatter().format(record))
    assert line["ts"] == "1970-01-01T00:00:00.000+00:00"
    assert line["message"] == "upload.stored"
    assert line["upload_name"] == "a.txt"
    assert "lineno" not in line


def test_mount_match_prefers_longest_prefix(tmp_path) -> None:
    table = MountTable()
    table.mount("/", tmp_path)
    table.mount("/data", tmp_path)
    assert table.match("/data/x.txt").name == "data"
    assert table.match("/data").name == "data"
    assert table.match("/database").name == "root"
    assert MountTable().match("/anything") is None


def _request_end(caplog: pytest.LogCaptureFixture, path: str) -> logging.LogRecord:
    ends = [r for r in caplog.records if r.getMessage() == "request.end" and r.path == path]
    assert len(ends) == 1
    return ends[0]


def test_request_end_names_the_serving_mount(
    client: TestClient, settings: Settings, caplog: pytest.LogCaptureFixture
) -> None:
    (settings.upload_dir / "seen.txt").write_bytes(b"x")
    with caplog.at_level(logging.INFO, logger="app"):
        client.get("/uploads/seen.txt")
        client.get("/data/missing.txt")
        client.get("/health")

    assert _request_end(caplog, "/uploads/seen.txt").mount == "uploads"
    missing = _request_end(caplog, "/data/missing.txt")
    assert missing.mount == "data"
    assert missing.status_code == 404
    assert _request_end(caplog, "/health").mount is None
