"""Flat-file caches that let a crawl skip work done by earlier runs.

Three files are kept:

* folder cache: CSV rows ``path,timestampMillis,mtime``, fully rewritten on update
* thumb cache: one relative path per line, append-only
* fail cache: one relative path per line, append-only
"""

import csv
import io
import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from localthumbs.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FolderCacheEntry:
    """Last successful scan of a remote folder."""

    last_scan_ms: int
    last_mtime: str


class CacheService:
    """Loads and persists the folder, thumb and fail caches.

    All disk writes go through one lock so concurrent jobs never interleave
    partial lines.
    """

    def __init__(self, folder_cache: Path, thumb_cache: Path, fail_cache: Path) -> None:
        self.folder_cache_path = Path(folder_cache)
        self.thumb_cache_path = Path(thumb_cache)
        self.fail_cache_path = Path(fail_cache)
        self.folders: dict[str, FolderCacheEntry] = {}
        self.thumbs: set[str] = set()
        self.failures: set[str] = set()
        self._write_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheService":
        return cls(settings.folder_cache, settings.thumb_cache, settings.fail_cache)

    def load(self) -> tuple[dict[str, FolderCacheEntry], set[str], set[str]]:
        """Read all three cache files; missing files count as empty."""
        self.folders = self._read_folder_cache(self.folder_cache_path)
        self.thumbs = self._read_path_set(self.thumb_cache_path)
        self.failures = self._read_path_set(self.fail_cache_path)
        logger.debug(
            "Loaded caches: %d folders, %d thumbs, %d failures",
            len(self.folders),
            len(self.thumbs),
            len(self.failures),
        )
        return self.folders, self.thumbs, self.failures

    @staticmethod
    def _read_folder_cache(path: Path) -> dict[str, FolderCacheEntry]:
        entries: dict[str, FolderCacheEntry] = {}
        if not path.exists():
            return entries
        with open(path, encoding="utf-8", newline="") as f:
            for row in csv.reader(f):
                if len(row) < 2 or not row[0]:
                    continue
                try:
                    timestamp = int(row[1])
                except ValueError:
                    continue
                # Two-column rows predate mtime tracking; an empty mtime never matches
                mtime = row[2] if len(row) > 2 else ""
                entries[row[0]] = FolderCacheEntry(last_scan_ms=timestamp, last_mtime=mtime)
        return entries

    @staticmethod
    def _read_path_set(path: Path) -> set[str]:
        if not path.exists():
            return set()
        with open(path, encoding="utf-8") as f:
            return {line.strip() for line in f if line.strip()}

    def get_folder(self, path: str) -> FolderCacheEntry | None:
        return self.folders.get(path)

    def update_folder(self, path: str, last_scan_ms: int, last_mtime: str) -> None:
        """Record a completed folder scan and rewrite the folder cache file."""
        self.folders[path] = FolderCacheEntry(last_scan_ms=last_scan_ms, last_mtime=last_mtime)
        self.persist_folders()

    def persist_folders(self) -> None:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        for path, entry in self.folders.items():
            writer.writerow([path, entry.last_scan_ms, entry.last_mtime])

        with self._write_lock:
            self.folder_cache_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.folder_cache_path, "w", encoding="utf-8", newline="") as f:
                f.write(buf.getvalue())

    def is_done(self, path: str) -> bool:
        return path in self.thumbs

    def is_failed(self, path: str) -> bool:
        return path in self.failures

    def mark_done(self, path: str) -> None:
        """Add ``path`` to the thumb cache."""
        self._append(self.thumbs, self.thumb_cache_path, path)

    def mark_failed(self, path: str) -> None:
        """Add ``path`` to the fail cache."""
        self._append(self.failures, self.fail_cache_path, path)

    def _append(self, members: set[str], cache_file: Path, path: str) -> None:
        with self._write_lock:
            if path in members:
                return
            members.add(path)
            cache_file.parent.mkdir(parents=True, exist_ok=True)
            with open(cache_file, "a", encoding="utf-8") as f:
                f.write(path + "\n")
