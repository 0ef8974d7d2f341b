"""ffprobe/ffmpeg invocation for duration probing and frame extraction.

Commands are always built as argument lists, never shell strings, so
authentication headers and URLs cannot be interpreted by a shell.
"""

import json
import math
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

# Probe allowances for containers whose index sits late in the file
ANALYZE_DURATION_US = 100_000_000
PROBE_SIZE_BYTES = 100 * 1024 * 1024

THUMBNAIL_WIDTH = 1024
TIMESTAMP_THRESHOLDS = (50, 40, 30, 20, 10, 5)

STDERR_EXCERPT = 200

# A seek to exactly the duration lands on end-of-file and decodes no frame
SEEK_END_MARGIN = 0.1


class ProbeError(Exception):
    """Raised when ffprobe fails or reports no usable duration."""


class ExtractionError(Exception):
    """Raised when ffmpeg cannot produce a thumbnail."""


@dataclass
class CommandResult:
    """Outcome of one subprocess invocation."""

    ok: bool
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def diagnostic(self) -> str:
        """Short single-line description of a failure."""
        text = (self.stderr or self.stdout or "").replace("\n", " ").strip()
        return f"exit code {self.returncode}: {text[:STDERR_EXCERPT]}"


def run_command(args: list[str]) -> CommandResult:
    """Run a command without a shell and capture its output."""
    try:
        proc = subprocess.run(args, capture_output=True, text=True, check=False)
    except OSError as e:
        return CommandResult(ok=False, returncode=-1, stderr=str(e))
    return CommandResult(
        ok=proc.returncode == 0,
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )


def ffmpeg_thread_count(configured: int, cpu_count: int | None = None) -> int:
    """Number of threads handed to ffmpeg.

    -1 means "all cores but one" (at least 1); any other value is clamped to >= 1.
    """
    if configured == -1:
        cpus = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
        return 1 if cpus <= 1 else cpus - 1
    return max(1, configured)


def choose_timestamp(duration: float) -> float:
    """Pick the seek position for the thumbnail frame.

    The largest of 50/40/30/20/10/5 seconds that fits in the video; very short
    videos use 20% of their duration instead. A duration equal to a threshold
    seeks just before the end.
    """
    if duration <= 5:
        return max(0.0, duration * 0.2)
    for threshold in TIMESTAMP_THRESHOLDS:
        if threshold < duration:
            return float(threshold)
        if threshold == duration:
            return duration - SEEK_END_MARGIN
    return 0.0


def _format_headers(headers: dict[str, str]) -> str:
    return "".join(f"{name}: {value}\r\n" for name, value in headers.items())


def parse_duration(probe_output: str) -> float:
    """Read format.duration from ffprobe JSON output.

    Raises:
        ProbeError: If the output has no positive, finite duration
    """
    try:
        metadata = json.loads(probe_output)
    except ValueError as e:
        raise ProbeError(f"Unreadable ffprobe output: {e}") from e
    fmt = metadata.get("format") if isinstance(metadata, dict) else None
    if not isinstance(fmt, dict):
        raise ProbeError("No format detected in ffprobe output")
    try:
        duration = float(fmt.get("duration"))
    except (TypeError, ValueError) as e:
        raise ProbeError("No duration in ffprobe output") from e
    if not math.isfinite(duration) or duration <= 0:
        raise ProbeError(f"Invalid duration {duration!r} in ffprobe output")
    return duration


class MediaTool:
    """Builds and runs ffprobe/ffmpeg commands for local files and remote URLs."""

    def __init__(
        self,
        verify_tls: bool = True,
        threads: int = 1,
        ffprobe_bin: str | None = None,
        ffmpeg_bin: str | None = None,
    ) -> None:
        self.verify_tls = verify_tls
        self.threads = threads
        self.ffprobe_bin = ffprobe_bin or shutil.which("ffprobe") or "ffprobe"
        self.ffmpeg_bin = ffmpeg_bin or shutil.which("ffmpeg") or "ffmpeg"

    def _remote_input_args(self, headers: dict[str, str] | None) -> list[str]:
        if headers is None:
            return []
        args = ["-tls_verify", "1" if self.verify_tls else "0"]
        if headers:
            args.extend(["-headers", _format_headers(headers)])
        return args

    def probe_args(self, source: str, headers: dict[str, str] | None = None) -> list[str]:
        """ffprobe arguments; ``headers`` is only given for remote URLs."""
        args = [self.ffprobe_bin, "-v", "error", "-print_format", "json", "-show_format"]
        if headers is not None:
            args.extend(
                ["-analyzeduration", str(ANALYZE_DURATION_US), "-probesize", str(PROBE_SIZE_BYTES)]
            )
        args.extend(self._remote_input_args(headers))
        args.append(source)
        return args

    def extract_args(
        self,
        source: str,
        timestamp: float,
        output: Path,
        headers: dict[str, str] | None = None,
    ) -> list[str]:
        args = [self.ffmpeg_bin, "-hide_banner", "-loglevel", "error", "-y"]
        args.extend(self._remote_input_args(headers))
        args.extend(["-threads", str(self.threads)])
        args.extend(["-ss", f"{timestamp:.3f}", "-i", source])
        args.extend(
            [
                "-frames:v",
                "1",
                "-vf",
                f"scale={THUMBNAIL_WIDTH}:-2",
                "-threads",
                str(self.threads),
                str(output),
            ]
        )
        return args

    def probe_duration(self, source: str, headers: dict[str, str] | None = None) -> float:
        """Container duration in seconds.

        Raises:
            ProbeError: If ffprobe fails or reports no duration
        """
        result = run_command(self.probe_args(source, headers))
        if not result.ok:
            raise ProbeError(f"Probe failed ({result.diagnostic})")
        return parse_duration(result.stdout)

    def extract_frame(
        self,
        source: str,
        duration: float,
        output: Path,
        headers: dict[str, str] | None = None,
    ) -> float:
        """Write one JPEG frame to ``output``.

        Returns:
            The timestamp the frame was taken at

        Raises:
            ExtractionError: If ffmpeg fails or writes nothing
        """
        timestamp = choose_timestamp(duration)
        result = run_command(self.extract_args(source, timestamp, output, headers))
        if not result.ok:
            raise ExtractionError(f"Frame extraction failed ({result.diagnostic})")
        if not output.exists() or output.stat().st_size == 0:
            raise ExtractionError(f"ffmpeg produced no image at {timestamp:.2f}s")
        return timestamp
