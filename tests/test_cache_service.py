"""Tests for the cache service module."""

import threading
from pathlib import Path

from localthumbs.config import Settings
from localthumbs.services.cache_service import CacheService, FolderCacheEntry


class TestLoad:
    """Tests for loading the three cache files."""

    def test_missing_files_load_empty(self, settings: Settings) -> None:
        """Test that absent cache files are treated as empty."""
        service = CacheService.from_settings(settings)
        folders, thumbs, failures = service.load()

        assert folders == {}
        assert thumbs == set()
        assert failures == set()

    def test_loads_folder_entries(self, settings: Settings) -> None:
        """Test that folder rows are parsed into entries."""
        settings.folder_cache.write_text("/Videos,1700000000000,1699999999\n/,1700000000001,42\n")

        service = CacheService.from_settings(settings)
        folders, _, _ = service.load()

        assert folders["/Videos"] == FolderCacheEntry(1700000000000, "1699999999")
        assert folders["/"] == FolderCacheEntry(1700000000001, "42")

    def test_skips_malformed_folder_rows(self, settings: Settings) -> None:
        """Test that rows without a numeric timestamp are ignored."""
        settings.folder_cache.write_text(
            "garbage\n/a,not-a-number,1\n,123,1\n/ok,5,abc\n\n"
        )

        service = CacheService.from_settings(settings)
        folders, _, _ = service.load()

        assert list(folders) == ["/ok"]

    def test_legacy_two_column_rows_get_empty_mtime(self, settings: Settings) -> None:
        """Test that rows written before mtime tracking still load."""
        settings.folder_cache.write_text("/Old,1600000000000\n")

        service = CacheService.from_settings(settings)
        folders, _, _ = service.load()

        assert folders["/Old"].last_mtime == ""

    def test_loads_path_sets_ignoring_blank_lines(self, settings: Settings) -> None:
        """Test that thumb and fail caches are read one path per line."""
        settings.thumb_cache.write_text("/a.mp4\n\n  /b.mov  \n")
        settings.fail_cache.write_text("/c.mkv\n")

        service = CacheService.from_settings(settings)
        _, thumbs, failures = service.load()

        assert thumbs == {"/a.mp4", "/b.mov"}
        assert failures == {"/c.mkv"}


class TestFolderCache:
    """Tests for folder cache persistence."""

    def test_update_rewrites_whole_file(self, cache_service: CacheService) -> None:
        """Test that every update persists the full table."""
        cache_service.update_folder("/a", 1, "m1")
        cache_service.update_folder("/b", 2, "m2")
        cache_service.update_folder("/a", 3, "m3")

        lines = cache_service.folder_cache_path.read_text().splitlines()
        assert lines == ["/a,3,m3", "/b,2,m2"]

    def test_round_trips_commas_in_mtime(self, settings: Settings) -> None:
        """Test that HTTP-date style markers with commas survive a reload."""
        service = CacheService.from_settings(settings)
        service.load()
        service.update_folder("/My, Videos", 10, "Tue, 15 Nov 1994 08:12:31 GMT")

        reloaded = CacheService.from_settings(settings)
        folders, _, _ = reloaded.load()

        assert folders["/My, Videos"] == FolderCacheEntry(10, "Tue, 15 Nov 1994 08:12:31 GMT")

    def test_get_folder_unknown_returns_none(self, cache_service: CacheService) -> None:
        """Test lookup of a folder that was never scanned."""
        assert cache_service.get_folder("/nope") is None


class TestMarkDoneAndFailed:
    """Tests for the append-only path caches."""

    def test_mark_done_appends_line(self, cache_service: CacheService) -> None:
        """Test that mark_done updates memory and disk."""
        cache_service.mark_done("/Videos/a.mp4")

        assert cache_service.is_done("/Videos/a.mp4")
        assert cache_service.thumb_cache_path.read_text() == "/Videos/a.mp4\n"

    def test_mark_failed_appends_line(self, cache_service: CacheService) -> None:
        """Test that mark_failed updates memory and disk."""
        cache_service.mark_failed("/Videos/broken.avi")

        assert cache_service.is_failed("/Videos/broken.avi")
        assert cache_service.fail_cache_path.read_text() == "/Videos/broken.avi\n"

    def test_mark_done_is_idempotent(self, cache_service: CacheService) -> None:
        """Test that marking the same path twice writes it once."""
        cache_service.mark_done("/x.mp4")
        cache_service.mark_done("/x.mp4")

        assert cache_service.thumb_cache_path.read_text().splitlines() == ["/x.mp4"]

    def test_append_does_not_truncate_existing_file(self, settings: Settings) -> None:
        """Test that earlier runs' entries are preserved."""
        settings.thumb_cache.write_text("/old.mp4\n")
        service = CacheService.from_settings(settings)
        service.load()

        service.mark_done("/new.mp4")

        assert settings.thumb_cache.read_text().splitlines() == ["/old.mp4", "/new.mp4"]

    def test_concurrent_appends_never_interleave(self, cache_service: CacheService) -> None:
        """Test that many threads appending produce only whole lines."""
        paths = [f"/Videos/clip_{i:04d}_{'x' * 50}.mp4" for i in range(400)]

        def worker(chunk: list[str]) -> None:
            for p in chunk:
                cache_service.mark_done(p)

        threads = [threading.Thread(target=worker, args=(paths[i::8],)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        lines = Path(cache_service.thumb_cache_path).read_text().splitlines()
        assert sorted(lines) == sorted(paths)
