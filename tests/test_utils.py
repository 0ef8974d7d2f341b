"""Tests for shared utility functions."""

import pytest

from localthumbs.services.utils import (
    format_file_size,
    normalize_path,
    path_fingerprint,
    relative_to_prefix,
    video_extension,
)


class TestFormatFileSize:
    """Tests for format_file_size."""

    def test_units(self) -> None:
        """Test formatting across units."""
        assert format_file_size(512) == "512.0 B"
        assert format_file_size(1536) == "1.5 KB"
        assert format_file_size(5000 * 1024 * 1024) == "4.9 GB"


class TestPaths:
    """Tests for path normalization helpers."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("", "/"),
            ("/", "/"),
            ("Videos", "/Videos"),
            ("/Videos/", "/Videos"),
            ("//Videos//a.mp4", "/Videos/a.mp4"),
        ],
    )
    def test_normalize_path(self, raw: str, expected: str) -> None:
        """Test that paths always start with exactly one slash."""
        assert normalize_path(raw) == expected

    def test_relative_to_prefix(self) -> None:
        """Test stripping the WebDAV prefix from a server href path."""
        prefix = "/remote.php/dav/files/alice/"
        assert relative_to_prefix("/remote.php/dav/files/alice/Videos/a.mp4", prefix) == (
            "/Videos/a.mp4"
        )
        assert relative_to_prefix("/remote.php/dav/files/alice/", prefix) == "/"
        assert relative_to_prefix("/remote.php/dav/files/alice", prefix) == "/"


class TestFingerprint:
    """Tests for path_fingerprint."""

    def test_is_eight_hex_chars_and_stable(self) -> None:
        """Test that fingerprints are deterministic 8-char hex strings."""
        fp = path_fingerprint("/remote.php/dav/files/alice/Videos/a.mp4")

        assert len(fp) == 8
        int(fp, 16)
        assert fp == path_fingerprint("/remote.php/dav/files/alice/Videos/a.mp4")

    def test_distinct_paths_differ(self) -> None:
        """Test that different paths give different fingerprints."""
        assert path_fingerprint("/a.mp4") != path_fingerprint("/b.mp4")


class TestVideoExtension:
    """Tests for video_extension."""

    @pytest.mark.parametrize("name", ["a.mp4", "B.MOV", "c.m4v", "d.Avi", "e.mkv", "f.wmv"])
    def test_recognized(self, name: str) -> None:
        """Test case-insensitive matching of video extensions."""
        assert video_extension(name) == "." + name.rsplit(".", 1)[1].lower()

    @pytest.mark.parametrize("name", ["notes.txt", "photo.jpg", "noext", "movie.mp4.part"])
    def test_not_recognized(self, name: str) -> None:
        """Test that other files are not candidates."""
        assert video_extension(name) is None
