"""Directory walker that finds videos without thumbnails and dispatches jobs."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from localthumbs.services.api_service import ExistenceResolver, ThumbnailApi
from localthumbs.services.cache_service import CacheService
from localthumbs.services.log_service import get_log_service
from localthumbs.services.scheduler import JobScheduler
from localthumbs.services.thumbnail_pipeline import (
    ThumbnailPipeline,
    VideoCandidate,
    VideoTooLargeError,
)
from localthumbs.services.utils import normalize_path, video_extension
from localthumbs.services.webdav_service import RemoteEntry, WebDavClient, WebDavError

logger = logging.getLogger(__name__)


class JobOutcome(Enum):
    """Terminal state of one discovered candidate."""

    UPLOADED = "uploaded"
    FAILED = "failed"
    SKIPPED_SIZE = "skipped_size"
    SKIPPED_EXISTS = "skipped_exists"
    SKIPPED_CACHE = "skipped_cache"


@dataclass
class RunStats:
    """Counters for one crawl run."""

    uploaded: int = 0
    failed: int = 0
    skipped_size: int = 0
    skipped_exists: int = 0
    skipped_cache: int = 0
    skipped_size_list: list[tuple[str, float]] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, outcome: JobOutcome, path: str = "", size_mb: float = 0.0) -> None:
        with self.lock:
            if outcome is JobOutcome.UPLOADED:
                self.uploaded += 1
            elif outcome is JobOutcome.FAILED:
                self.failed += 1
            elif outcome is JobOutcome.SKIPPED_SIZE:
                self.skipped_size += 1
                self.skipped_size_list.append((path, size_mb))
            elif outcome is JobOutcome.SKIPPED_EXISTS:
                self.skipped_exists += 1
            elif outcome is JobOutcome.SKIPPED_CACHE:
                self.skipped_cache += 1

    @property
    def total(self) -> int:
        return (
            self.uploaded
            + self.failed
            + self.skipped_size
            + self.skipped_exists
            + self.skipped_cache
        )

    def to_dict(self) -> dict[str, Any]:
        with self.lock:
            return {
                "uploaded": self.uploaded,
                "failed": self.failed,
                "skipped_size": self.skipped_size,
                "skipped_size_list": [
                    {"path": path, "size_mb": size_mb} for path, size_mb in self.skipped_size_list
                ],
                "skipped_exists": self.skipped_exists,
                "skipped_cache": self.skipped_cache,
                "total": self.total,
            }

    def summary_lines(self) -> list[str]:
        """Human-readable end-of-run report."""
        rule = "=" * 30
        lines = [
            rule,
            "Scan Complete",
            rule,
            f"Uploaded:         {self.uploaded}",
            f"Failed:           {self.failed}",
            f"Skipped (Size):   {self.skipped_size}",
        ]
        lines.extend(f"   - {path} ({size_mb:.2f} MB)" for path, size_mb in self.skipped_size_list)
        lines.extend(
            [
                f"Skipped (Exists): {self.skipped_exists}",
                f"Skipped (Cache):  {self.skipped_cache}",
                rule,
            ]
        )
        return lines


class ScanManager:
    """Walks the remote tree depth-first and feeds new videos to the scheduler."""

    def __init__(
        self,
        webdav: WebDavClient,
        cache: CacheService,
        resolver: ExistenceResolver,
        scheduler: JobScheduler,
        pipeline: ThumbnailPipeline,
        api: ThumbnailApi,
        cooldown_seconds: float,
        force: bool = False,
        stats: RunStats | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.webdav = webdav
        self.cache = cache
        self.resolver = resolver
        self.scheduler = scheduler
        self.pipeline = pipeline
        self.api = api
        self.cooldown_ms = int(cooldown_seconds * 1000)
        self.force = force
        self.stats = stats or RunStats()
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def scan(self, directory: str = "/") -> bool:
        """Scan ``directory`` and everything below it.

        Returns:
            True if the subtree contains at least one recognized video
        """
        rel_dir = normalize_path(directory)
        log = get_log_service()

        try:
            mtime = self.webdav.stat(rel_dir).mtime
        except WebDavError as e:
            log.error(
                "scan",
                "scan_folder_error",
                f"WebDAV access error: {rel_dir} - {e}",
                {"folder": rel_dir, "error": str(e)},
            )
            return False

        now_ms = self._now_ms()
        if not self.force:
            cached = self.cache.get_folder(rel_dir)
            if (
                cached is not None
                and cached.last_mtime == mtime
                and now_ms - cached.last_scan_ms < self.cooldown_ms
            ):
                logger.debug("Unchanged since last scan: %s", rel_dir)
                return False

        log.info("scan", "scan_folder_started", f"Scanning: {rel_dir}", {"folder": rel_dir})
        try:
            items = self.webdav.list_directory(rel_dir)
        except WebDavError as e:
            log.error(
                "scan",
                "scan_folder_error",
                f"WebDAV access error: {rel_dir} - {e}",
                {"folder": rel_dir, "error": str(e)},
            )
            return False

        media_in_tree = False
        files: list[RemoteEntry] = []
        for item in items:
            if item.is_dir:
                if self.scan(item.relative_path):
                    media_in_tree = True
            else:
                files.append(item)

        candidates = self._collect_candidates(files)
        if candidates:
            media_in_tree = True
        self._dispatch(self._filter_cached(candidates))

        self.cache.update_folder(rel_dir, now_ms, mtime)
        return media_in_tree

    def _collect_candidates(self, files: list[RemoteEntry]) -> list[VideoCandidate]:
        candidates = []
        for item in files:
            ext = video_extension(item.name)
            if ext is None:
                continue
            candidates.append(
                VideoCandidate(
                    absolute_path=item.href_path,
                    relative_path=item.relative_path,
                    extension=ext,
                    size_bytes=item.size,
                )
            )
        return candidates

    def _filter_cached(self, candidates: list[VideoCandidate]) -> list[VideoCandidate]:
        if self.force:
            return candidates
        remaining = []
        for candidate in candidates:
            path = candidate.relative_path
            if self.cache.is_done(path):
                self.stats.record(JobOutcome.SKIPPED_CACHE)
                continue
            if self.cache.is_failed(path):
                logger.info("[Skip] Previously failed: %s", path)
                self.stats.record(JobOutcome.SKIPPED_CACHE)
                continue
            remaining.append(candidate)
        return remaining

    def _dispatch(self, candidates: list[VideoCandidate]) -> None:
        """Drop candidates the server already has, submit the rest as jobs."""
        if not candidates:
            return

        existing: dict[str, bool] = {}
        if not self.force:
            existing = self.resolver.resolve_batch([c.relative_path for c in candidates])

        for candidate in candidates:
            if existing.get(candidate.relative_path) is True:
                get_log_service().info(
                    "scan",
                    "thumbnail_exists",
                    f"[Skip] Already exists on server: {candidate.relative_path}",
                    {"path": candidate.relative_path},
                )
                self.cache.mark_done(candidate.relative_path)
                self.stats.record(JobOutcome.SKIPPED_EXISTS)
                continue
            self.scheduler.submit_job(self.process_candidate, candidate)

    def process_candidate(self, candidate: VideoCandidate) -> JobOutcome:
        """Run the pipeline and upload for one candidate, recording the outcome."""
        log = get_log_service()
        path = candidate.relative_path
        try:
            thumb_path = self.pipeline.fetch_and_thumbnail(candidate)
            log.info("upload", "thumbnail_upload_started", f"Uploading thumb for: {path}")
            self.scheduler.io.call(self.api.upload, path, thumb_path)
            self.cache.mark_done(path)
            self.stats.record(JobOutcome.UPLOADED)
            log.info(
                "upload",
                "thumbnail_uploaded",
                f"Success: {path}",
                {"path": path, "size_mb": candidate.size_mb},
            )
            return JobOutcome.UPLOADED
        except VideoTooLargeError as e:
            self.stats.record(JobOutcome.SKIPPED_SIZE, path, candidate.size_mb)
            log.warning(
                "pipeline",
                "video_too_large",
                f"[Skip] Full file too large for fallback ({candidate.size_mb:.2f} MB): {path}",
                {"path": path, "size_mb": candidate.size_mb, "limit_bytes": e.limit_bytes},
            )
            return JobOutcome.SKIPPED_SIZE
        except Exception as e:
            self.cache.mark_failed(path)
            self.stats.record(JobOutcome.FAILED)
            log.error(
                "pipeline",
                "thumbnail_failed",
                f"Failed for {path}: {e}",
                {"path": path, "error": str(e)},
            )
            return JobOutcome.FAILED
        finally:
            self.pipeline.cleanup(candidate)
