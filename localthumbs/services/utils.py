"""Path, size and naming helpers shared by the crawler services."""

import hashlib
import posixpath

# Extensions treated as video candidates (compared lowercase)
VIDEO_EXTENSIONS = frozenset({".mp4", ".m4v", ".mov", ".avi", ".mkv", ".wmv"})


def format_file_size(size_bytes: int) -> str:
    """Format a file size in bytes to a human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human-readable size string (e.g., "1.5 GB")
    """
    size_float = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(size_float) < 1024.0:
            return f"{size_float:.1f} {unit}"
        size_float = size_float / 1024.0
    return f"{size_float:.1f} PB"


def size_in_mb(size_bytes: int) -> float:
    return round(size_bytes / 1024 / 1024, 2)


def normalize_path(path: str) -> str:
    """Normalize a server-relative path so it always starts with a single '/'.

    Trailing slashes are dropped, except for the root itself.
    """
    if not path:
        return "/"
    norm = posixpath.normpath("/" + path.lstrip("/"))
    # normpath keeps a leading '//' intact
    if norm.startswith("//"):
        norm = "/" + norm.lstrip("/")
    return norm


def relative_to_prefix(full_path: str, prefix: str) -> str:
    """Strip the WebDAV path prefix from ``full_path`` and normalize the rest."""
    rel = full_path
    stripped_prefix = prefix.rstrip("/")
    if stripped_prefix and rel.startswith(stripped_prefix):
        rel = rel[len(stripped_prefix):]
    return normalize_path(rel)


def path_fingerprint(path: str) -> str:
    """Short deterministic hash of a remote path, used for temp file names."""
    return hashlib.md5(path.encode("utf-8")).hexdigest()[:8]


def video_extension(name: str) -> str | None:
    """Return the lowercase extension when ``name`` is a recognized video, else None."""
    ext = posixpath.splitext(name)[1].lower()
    return ext if ext in VIDEO_EXTENSIONS else None
