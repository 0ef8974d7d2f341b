"""Configuration management for localthumbs"""

import json
import os
import tempfile
import tomllib
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlsplit

from dotenv import load_dotenv

# Base directory for the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
ENV_FILE = BASE_DIR / ".env"
load_dotenv(ENV_FILE)

# Settings file paths
SETTINGS_FILE = BASE_DIR / "settings.json"
SETTINGS_DEFAULT_FILE = BASE_DIR / "settings.default.json"
PYPROJECT_FILE = BASE_DIR / "pyproject.toml"

# Name of the server app that stores the thumbnails
SERVER_APP_NAME = "localthumbs"

# Environment variable names for configuration
ENV_OVERRIDES = {
    "nc_url": "NC_URL",
    "nc_user": "NC_USER",
    "nc_pass": "NC_PASS",
    "api_secret": "LOCALTHUMBS_SECRET",
    "verify_tls": "VERIFY_TLS",
    "temp_dir": "TEMP_DIR",
    "folder_cache": "FOLDER_CACHE",
    "thumb_cache": "THUMB_CACHE",
    "fail_cache": "FAIL_CACHE",
    "scan_interval_days": "SCAN_INTERVAL_DAYS",
    "ffmpeg_threads": "FFMPEG_THREADS",
    "max_video_size_mb": "MAX_VIDEO_SIZE_MB",
    "io_concurrency": "IO_CONCURRENCY",
    "job_concurrency": "JOB_CONCURRENCY",
    "log_directory": "LOG_DIRECTORY",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def get_package_version() -> str:
    """Get the package version from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("version", "0.0.0"))
    except Exception:
        return "0.0.0"


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _as_int(value: Any, default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


class Settings:
    """Manages crawler settings stored in JSON format."""

    _instance: "Settings | None" = None
    _settings: dict[str, Any]

    def __new__(cls) -> "Settings":
        """Singleton pattern to ensure only one settings instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_settings()
        return cls._instance

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """Build a detached settings object from defaults plus ``data``.

        Used by tests and embedders that do not want file or environment lookups.
        """
        instance = super().__new__(cls)
        instance._settings = {**cls._defaults(), **data}
        return instance

    @staticmethod
    def _defaults() -> dict[str, Any]:
        return {
            "nc_url": "",
            "nc_user": "",
            "nc_pass": "",
            "api_secret": "",
            "verify_tls": True,
            "temp_dir": str(Path(tempfile.gettempdir()) / "localthumbs"),
            "folder_cache": "folder_cache.csv",
            "thumb_cache": "thumb_cache.txt",
            "fail_cache": "fail_cache.txt",
            "scan_interval_days": 7,
            "ffmpeg_threads": -1,
            "max_video_size_mb": 3000,
            "io_concurrency": 2,
            "job_concurrency": 3,
            "log_directory": "logs",
        }

    def _load_settings(self) -> None:
        """Load settings from file, with environment variables taking precedence.

        Priority order (highest to lowest):
        1. Environment variables (from .env file or system)
        2. settings.json (user-saved settings)
        3. settings.default.json (template defaults)
        4. Hardcoded defaults
        """
        defaults = self._defaults()

        if SETTINGS_DEFAULT_FILE.exists():
            with open(SETTINGS_DEFAULT_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        if SETTINGS_FILE.exists():
            with open(SETTINGS_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        # Only apply non-empty environment values
        for key, env_name in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None and value != "":
                defaults[key] = value

        self._settings = defaults

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value by key."""
        return self._settings.get(key, default)

    def all(self) -> dict[str, Any]:
        """Get all settings as a dictionary."""
        return self._settings.copy()

    @property
    def nc_url(self) -> str:
        """WebDAV root of the user, e.g. https://host/remote.php/dav/files/alice/"""
        url = str(self._settings.get("nc_url", ""))
        return url if url.endswith("/") else url + "/"

    @property
    def nc_user(self) -> str:
        return str(self._settings.get("nc_user", ""))

    @property
    def nc_pass(self) -> str:
        return str(self._settings.get("nc_pass", ""))

    @property
    def api_secret(self) -> str:
        """Optional shared secret sent to the server app."""
        return str(self._settings.get("api_secret", "") or "")

    @property
    def verify_tls(self) -> bool:
        return _as_bool(self._settings.get("verify_tls", True))

    @property
    def temp_dir(self) -> Path:
        return Path(self._settings["temp_dir"])

    @property
    def folder_cache(self) -> Path:
        return Path(self._settings["folder_cache"])

    @property
    def thumb_cache(self) -> Path:
        return Path(self._settings["thumb_cache"])

    @property
    def fail_cache(self) -> Path:
        return Path(self._settings["fail_cache"])

    @property
    def log_directory(self) -> Path:
        return Path(self._settings.get("log_directory", "logs"))

    @property
    def cooldown_seconds(self) -> float:
        """Minimum age of a folder cache entry before an unchanged folder is re-listed."""
        days = _as_int(self._settings.get("scan_interval_days"), 7)
        return days * 24 * 60 * 60

    @property
    def ffmpeg_threads(self) -> int:
        return _as_int(self._settings.get("ffmpeg_threads"), -1)

    @property
    def max_video_size_mb(self) -> int:
        return _as_int(self._settings.get("max_video_size_mb"), 3000) or 3000

    @property
    def max_video_size_bytes(self) -> int:
        return self.max_video_size_mb * 1024 * 1024

    @property
    def io_concurrency(self) -> int:
        return max(1, _as_int(self._settings.get("io_concurrency"), 2))

    @property
    def job_concurrency(self) -> int:
        return max(1, _as_int(self._settings.get("job_concurrency"), 3))

    @property
    def base_url(self) -> str:
        """Scheme and host of the Nextcloud instance."""
        parts = urlsplit(self.nc_url)
        return f"{parts.scheme}://{parts.netloc}"

    @property
    def nextcloud_root(self) -> str:
        """Everything in front of /remote.php in the WebDAV URL."""
        return self.nc_url.split("/remote.php")[0].rstrip("/")

    @property
    def dav_path_prefix(self) -> str:
        """Decoded path component of the WebDAV URL, used to strip server hrefs.

        Hrefs are compared after percent-decoding, so the prefix is decoded too
        (Nextcloud shows user ids like alice%40example.com encoded).
        """
        return unquote(urlsplit(self.nc_url).path)

    @property
    def api_base(self) -> str:
        return f"{self.nextcloud_root}/index.php/apps/{SERVER_APP_NAME}/thumbnail"

    @property
    def capabilities_url(self) -> str:
        return f"{self.nextcloud_root}/ocs/v2.php/cloud/capabilities?format=json"


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    return Settings()
