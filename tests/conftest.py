from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from fileserver.config import Settings
from fileserver.main import create_app


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    data_dir = tmp_path / "data"
    upload_dir = data_dir / "uploads"
    upload_dir.mkdir(parents=True)
    return Settings(data_dir=data_dir, upload_dir=upload_dir, tls=False, max_upload_bytes=1024)


@pytest.fixture
def client(settings: Settings):
    with TestClient(create_app(settings)) as c:
        yield c
