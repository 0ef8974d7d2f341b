"""Pytest configuration and fixtures for the localthumbs tests."""

from collections.abc import Callable, Generator
from pathlib import Path

import pytest

import localthumbs.services.log_service as log_module
from localthumbs.config import Settings
from localthumbs.services.cache_service import CacheService
from localthumbs.services.log_service import LogService
from localthumbs.services.scheduler import JobScheduler
from localthumbs.services.webdav_service import RemoteEntry

NC_URL = "https://cloud.example.com/remote.php/dav/files/alice/"
DAV_PREFIX = "/remote.php/dav/files/alice/"


@pytest.fixture(autouse=True)
def isolated_log_service(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> LogService:
    """Route every event log write into a temporary directory."""
    service = LogService(log_dir=tmp_path / "logs")
    monkeypatch.setattr(log_module, "_log_service", service)
    return service


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Detached settings pointing every file at tmp_path."""
    return Settings.from_dict(
        {
            "nc_url": NC_URL,
            "nc_user": "alice",
            "nc_pass": "secret",
            "temp_dir": str(tmp_path / "scratch"),
            "folder_cache": str(tmp_path / "folder_cache.csv"),
            "thumb_cache": str(tmp_path / "thumb_cache.txt"),
            "fail_cache": str(tmp_path / "fail_cache.txt"),
            "log_directory": str(tmp_path / "logs"),
            "max_video_size_mb": 3000,
        }
    )


@pytest.fixture
def cache_service(settings: Settings) -> CacheService:
    """An empty, loaded cache service backed by temp files."""
    service = CacheService.from_settings(settings)
    service.load()
    return service


@pytest.fixture
def scheduler() -> Generator[JobScheduler, None, None]:
    """A scheduler with the default lane sizes, shut down after the test."""
    sched = JobScheduler(io_concurrency=2, job_concurrency=3)
    yield sched
    sched.shutdown()


def make_entry(
    relative_path: str, is_dir: bool = False, size: int = 0, mtime: str = "1"
) -> RemoteEntry:
    """Build a RemoteEntry as the WebDAV client would return it."""
    return RemoteEntry(
        href_path=DAV_PREFIX.rstrip("/") + relative_path,
        relative_path=relative_path,
        is_dir=is_dir,
        size=size,
        mtime=mtime,
    )


@pytest.fixture
def entry_factory() -> Callable[..., RemoteEntry]:
    """Expose make_entry to tests."""
    return make_entry
