from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from fileserver.config import Settings, parse_duration


@pytest.mark.parametrize(
    "raw, seconds",
    [
        ("60s", 60.0),
        ("1m30s", 90.0),
        ("250ms", 0.25),
        ("2h", 7200.0),
        ("1.5s", 1.5),
        ("45", 45.0),
        (10, 10.0),
    ],
)
def test_parse_duration(raw, seconds) -> None:
    assert parse_duration(raw) == pytest.approx(seconds)


@pytest.mark.parametrize("raw", ["", "abc", "10x", "s10", "1m 30s", "-5s", "-5"])
def test_parse_duration_rejects_malformed(raw) -> None:
    with pytest.raises(ValueError):
        parse_duration(raw)


def test_upload_dir_defaults_under_data_dir(tmp_path: Path) -> None:
    s = Settings(data_dir=tmp_path / "d")
    assert s.upload_dir == tmp_path / "d" / "uploads"


def test_paths_are_normalized(tmp_path: Path) -> None:
    s = Settings(data_dir=f"{tmp_path}/x/../d/", upload_dir=f"{tmp_path}//up")
    assert s.data_dir == tmp_path / "d"
    assert s.upload_dir == tmp_path / "up"


def test_settings_are_frozen(tmp_path: Path) -> None:
    s = Settings(data_dir=tmp_path)
    with pytest.raises(ValidationError):
        s.port = 80  # type: ignore[misc]


def test_timeout_accepts_duration_strings(tmp_path: Path) -> None:
    assert Settings(data_dir=tmp_path, shutdown_timeout="1m").shutdown_timeout == 60.0
    with pytest.raises(ValidationError):
        Settings(data_dir=tmp_path, shutdown_timeout="soon")


def test_url_reflects_scheme(tmp_path: Path) -> None:
    assert Settings(data_dir=tmp_path, host="10.0.0.5", port=8443).url == "https://10.0.0.5:8443"
    assert Settings(data_dir=tmp_path, tls=False).scheme == "http"


def test_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FILESERVER_PORT", "9000")
    monkeypatch.setenv("FILESERVER_TIMEOUT", "5s")
    assert Settings.env_defaults() == {"port": "9000", "shutdown_timeout": "5s"}


def test_env_defaults_cover_certificate_and_upload_fields(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("FILESERVER_TLS_SELF_SIGNED_CA", "false")
    monkeypatch.setenv("FILESERVER_TLS_COMMON_NAME", "files.example.test")
    monkeypatch.setenv("FILESERVER_UPLOAD_FIELD", "file")
    monkeypatch.setenv("FILESERVER_ROOT_FALLBACK", "")
    monkeypatch.setenv("FILESERVER_LOG_LEVEL", "warning")
    s = Settings(data_dir=tmp_path, **Settings.env_defaults())
    assert s.tls_self_signed_ca is False
    assert s.tls_common_name == "files.example.test"
    assert s.upload_field == "file"
    assert s.root_fallback is None
    assert s.log_level == "WARNING"


@pytest.mark.parametrize("level", ["verbose", "", "LOUD"])
def test_unknown_log_level_is_rejected(tmp_path: Path, level: str) -> None:
    with pytest.raises(ValidationError):
        Settings(data_dir=tmp_path, log_level=level)


def test_log_level_is_case_insensitive(tmp_path: Path) -> None:
    assert Settings(data_dir=tmp_path, log_level="trace").log_level == "TRACE"
