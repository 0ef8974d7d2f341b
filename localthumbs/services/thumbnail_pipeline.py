"""Three-stage thumbnail extraction for remote videos.

1. Remote stream: probe and extract straight from the WebDAV URL.
2. Partial download: fetch the first 100 MiB and work on the local prefix.
3. Full download: fetch the whole file, unless it exceeds the size limit.

Each stage runs only if the previous one failed.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from localthumbs.services.log_service import get_log_service
from localthumbs.services.media_service import ExtractionError, MediaTool, ProbeError
from localthumbs.services.scheduler import JobScheduler
from localthumbs.services.utils import path_fingerprint, size_in_mb
from localthumbs.services.webdav_service import WebDavClient, WebDavError

logger = logging.getLogger(__name__)

PARTIAL_DOWNLOAD_BYTES = 100 * 1024 * 1024
DOWNLOAD_RETRIES = 5
RETRY_BACKOFF_SECONDS = 5

# Errors that make a stage fall through to the next one
STAGE_ERRORS = (ProbeError, ExtractionError, WebDavError, OSError)


@dataclass(frozen=True)
class VideoCandidate:
    """A remote video that may need a thumbnail."""

    absolute_path: str
    relative_path: str
    extension: str
    size_bytes: int

    @property
    def size_mb(self) -> float:
        return size_in_mb(self.size_bytes)


class VideoTooLargeError(Exception):
    """Signals that a video needs a full download but exceeds the size limit.

    This is a skip, not a failure: the candidate stays eligible for later runs.
    """

    def __init__(self, candidate: VideoCandidate, limit_bytes: int) -> None:
        self.candidate = candidate
        self.limit_bytes = limit_bytes
        super().__init__(
            f"{candidate.relative_path} is {candidate.size_mb:.2f} MB, "
            f"limit is {size_in_mb(limit_bytes):.0f} MB"
        )


class ThumbnailPipeline:
    """Produces a local JPEG thumbnail for a VideoCandidate."""

    def __init__(
        self,
        webdav: WebDavClient,
        media: MediaTool,
        scheduler: JobScheduler,
        temp_dir: Path,
        max_video_size_bytes: int,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.webdav = webdav
        self.media = media
        self.scheduler = scheduler
        self.temp_dir = Path(temp_dir)
        self.max_video_size_bytes = max_video_size_bytes
        self._sleep = sleep

    def temp_paths(self, candidate: VideoCandidate) -> tuple[Path, Path]:
        """Scratch video and thumbnail paths, unique per remote path."""
        fingerprint = path_fingerprint(candidate.absolute_path)
        return (
            self.temp_dir / f"v_{fingerprint}{candidate.extension}",
            self.temp_dir / f"t_{fingerprint}.jpg",
        )

    def cleanup(self, candidate: VideoCandidate) -> None:
        """Delete any scratch files left for ``candidate``."""
        for path in self.temp_paths(candidate):
            if not path.exists():
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError:
                logger.warning("Failed to remove temp file: %s", path, exc_info=True)

    def fetch_and_thumbnail(self, candidate: VideoCandidate) -> Path:
        """Run the stages in order and return the thumbnail path.

        The scratch video is always removed before returning. The thumbnail is
        removed too when no stage succeeds.

        Raises:
            VideoTooLargeError: If only a full download could help and the file is too big
            ProbeError, ExtractionError, WebDavError: If the full-download stage fails
        """
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        local_video, local_thumb = self.temp_paths(candidate)
        try:
            if self._remote_stream(candidate, local_thumb):
                return local_thumb
            if self._partial_download(candidate, local_video, local_thumb):
                return local_thumb
            self._full_download(candidate, local_video, local_thumb)
            return local_thumb
        except Exception:
            self.cleanup(candidate)
            raise
        finally:
            if local_video.exists():
                local_video.unlink(missing_ok=True)

    def _remote_stream(self, candidate: VideoCandidate, local_thumb: Path) -> bool:
        log = get_log_service()
        log.info(
            "pipeline",
            "stage_started",
            f"Attempt 1: remote stream for {candidate.relative_path}",
            {"path": candidate.relative_path, "stage": "remote_stream"},
        )
        url = self.webdav.file_url(candidate.relative_path)
        headers = {"Authorization": self.webdav.auth_header()}
        try:
            duration = self.scheduler.media.call(self.media.probe_duration, url, headers)
            self._extract(url, duration, local_thumb, headers)
            return True
        except STAGE_ERRORS as e:
            log.warning(
                "pipeline",
                "stage_failed",
                f"Remote stream failed for {candidate.relative_path}, "
                f"falling back to partial download: {e}",
                {"path": candidate.relative_path, "stage": "remote_stream", "error": str(e)},
            )
            return False

    def _partial_download(
        self, candidate: VideoCandidate, local_video: Path, local_thumb: Path
    ) -> bool:
        log = get_log_service()
        log.info(
            "pipeline",
            "stage_started",
            f"Attempt 2: partial download (100MB) for {candidate.relative_path}",
            {"path": candidate.relative_path, "stage": "partial_download"},
        )
        try:
            self._download_with_retry(candidate, local_video, PARTIAL_DOWNLOAD_BYTES)
            # A container index beyond the downloaded prefix makes this probe fail
            duration = self.scheduler.media.call(self.media.probe_duration, str(local_video))
            self._extract(str(local_video), duration, local_thumb)
            return True
        except STAGE_ERRORS as e:
            log.warning(
                "pipeline",
                "stage_failed",
                f"Partial processing failed for {candidate.relative_path}, "
                f"checking size for full download: {e}",
                {"path": candidate.relative_path, "stage": "partial_download", "error": str(e)},
            )
            return False

    def _full_download(
        self, candidate: VideoCandidate, local_video: Path, local_thumb: Path
    ) -> None:
        if candidate.size_bytes > self.max_video_size_bytes:
            raise VideoTooLargeError(candidate, self.max_video_size_bytes)

        get_log_service().info(
            "pipeline",
            "stage_started",
            f"Attempt 3: full download for {candidate.relative_path}",
            {
                "path": candidate.relative_path,
                "stage": "full_download",
                "size_mb": candidate.size_mb,
            },
        )
        self._download_with_retry(candidate, local_video, None)
        duration = self.scheduler.media.call(self.media.probe_duration, str(local_video))
        self._extract(str(local_video), duration, local_thumb)

    def _extract(
        self,
        source: str,
        duration: float,
        local_thumb: Path,
        headers: dict[str, str] | None = None,
    ) -> None:
        timestamp = self.scheduler.media.call(
            self.media.extract_frame, source, duration, local_thumb, headers
        )
        logger.info("Video duration: %.2fs, took thumbnail at %.2fs", duration, timestamp)

    def _download_with_retry(
        self, candidate: VideoCandidate, dest: Path, max_bytes: int | None
    ) -> None:
        """Download on the I/O lane, retrying with a linear backoff.

        Attempt i (0-based) waits (i + 1) * 5 seconds before the next attempt.
        The wait happens outside the lane so it does not hold an I/O slot.
        """
        for attempt in range(DOWNLOAD_RETRIES):
            try:
                if attempt > 0:
                    logger.info(
                        "Download attempt %d/%d for %s",
                        attempt + 1,
                        DOWNLOAD_RETRIES,
                        candidate.relative_path,
                    )
                self.scheduler.io.call(
                    self.webdav.download, candidate.relative_path, dest, max_bytes
                )
                return
            except (WebDavError, OSError):
                if attempt == DOWNLOAD_RETRIES - 1:
                    raise
                self._sleep((attempt + 1) * RETRY_BACKOFF_SECONDS)
