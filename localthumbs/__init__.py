"""Factory for the localthumbs crawler."""

from localthumbs.config import Settings, get_settings
from localthumbs.services.api_service import ExistenceResolver, ThumbnailApi
from localthumbs.services.cache_service import CacheService
from localthumbs.services.media_service import MediaTool, ffmpeg_thread_count
from localthumbs.services.scan_manager import ScanManager
from localthumbs.services.scheduler import JobScheduler
from localthumbs.services.thumbnail_pipeline import ThumbnailPipeline
from localthumbs.services.webdav_service import WebDavClient, build_session


def create_scan_manager(settings: Settings | None = None, force: bool = False) -> ScanManager:
    """Wire caches, clients, lanes and the pipeline into a ready ScanManager.

    Caches are loaded here, but the server capability query is left to the caller.
    """
    settings = settings or get_settings()

    cache = CacheService.from_settings(settings)
    cache.load()

    session = build_session(settings)
    webdav = WebDavClient(settings, session)
    api = ThumbnailApi(settings, session)
    scheduler = JobScheduler(settings.io_concurrency, settings.job_concurrency)
    resolver = ExistenceResolver(api, scheduler.io)

    media = MediaTool(
        verify_tls=settings.verify_tls,
        threads=ffmpeg_thread_count(settings.ffmpeg_threads),
    )
    pipeline = ThumbnailPipeline(
        webdav,
        media,
        scheduler,
        temp_dir=settings.temp_dir,
        max_video_size_bytes=settings.max_video_size_bytes,
    )

    return ScanManager(
        webdav=webdav,
        cache=cache,
        resolver=resolver,
        scheduler=scheduler,
        pipeline=pipeline,
        api=api,
        cooldown_seconds=settings.cooldown_seconds,
        force=force,
    )
