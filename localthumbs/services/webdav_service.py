"""WebDAV client for listing, stat-ing and downloading remote files."""

import base64
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from pathlib import Path
from urllib.parse import quote, unquote, urlsplit

import requests
from requests.adapters import HTTPAdapter

from localthumbs.config import Settings
from localthumbs.services.utils import format_file_size, normalize_path, relative_to_prefix

logger = logging.getLogger(__name__)

DAV_NS = "{DAV:}"

PROPFIND_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:">
  <d:prop>
    <d:resourcetype/>
    <d:getcontentlength/>
    <d:getlastmodified/>
    <d:getetag/>
  </d:prop>
</d:propfind>"""

DOWNLOAD_CHUNK_SIZE = 1024 * 1024
PROGRESS_LOG_INTERVAL = 50 * 1024 * 1024


class WebDavError(Exception):
    """Raised when a WebDAV request fails or returns an unusable response."""


@dataclass
class RemoteEntry:
    """One file or folder as reported by PROPFIND."""

    href_path: str  # absolute server path, percent-decoded
    relative_path: str  # path below the WebDAV root, always starting with '/'
    is_dir: bool
    size: int = 0
    mtime: str = ""

    @property
    def name(self) -> str:
        return self.relative_path.rstrip("/").rsplit("/", 1)[-1]


def build_session(settings: Settings) -> requests.Session:
    """Create a keep-alive session carrying the crawler's credentials."""
    session = requests.Session()
    session.auth = (settings.nc_user, settings.nc_pass)
    session.verify = settings.verify_tls
    adapter = HTTPAdapter(pool_connections=4, pool_maxsize=16)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def basic_auth_header(user: str, password: str) -> str:
    token = base64.b64encode(f"{user}:{password}".encode()).decode("ascii")
    return f"Basic {token}"


def _parse_mtime(lastmodified: str, etag: str) -> str:
    """Pick a modification marker; prefer getlastmodified, fall back to the etag."""
    if lastmodified:
        try:
            return str(int(parsedate_to_datetime(lastmodified).timestamp()))
        except (TypeError, ValueError):
            return lastmodified
    return etag.strip('"')


def parse_multistatus(body: bytes, dav_prefix: str) -> list[RemoteEntry]:
    """Parse a PROPFIND multistatus response into RemoteEntry objects."""
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise WebDavError(f"Malformed PROPFIND response: {e}") from e

    entries: list[RemoteEntry] = []
    for response in root.iter(f"{DAV_NS}response"):
        href = response.findtext(f"{DAV_NS}href") or ""
        if not href:
            continue
        href_path = unquote(urlsplit(href).path)

        prop = None
        for propstat in response.findall(f"{DAV_NS}propstat"):
            status = propstat.findtext(f"{DAV_NS}status") or ""
            if " 200 " in status or status.endswith(" 200"):
                prop = propstat.find(f"{DAV_NS}prop")
                break
        if prop is None:
            continue

        resourcetype = prop.find(f"{DAV_NS}resourcetype")
        is_dir = resourcetype is not None and resourcetype.find(f"{DAV_NS}collection") is not None
        try:
            size = int(prop.findtext(f"{DAV_NS}getcontentlength") or 0)
        except ValueError:
            size = 0
        mtime = _parse_mtime(
            prop.findtext(f"{DAV_NS}getlastmodified") or "",
            prop.findtext(f"{DAV_NS}getetag") or "",
        )
        entries.append(
            RemoteEntry(
                href_path=href_path.rstrip("/") or "/",
                relative_path=relative_to_prefix(href_path, dav_prefix),
                is_dir=is_dir,
                size=size,
                mtime=mtime,
            )
        )
    return entries


class WebDavClient:
    """Thin PROPFIND/GET client bound to one user's WebDAV root."""

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self.settings = settings
        self.root_url = settings.nc_url
        self.dav_prefix = settings.dav_path_prefix
        self.session = session or build_session(settings)

    def file_url(self, relative_path: str) -> str:
        """Direct, percent-encoded URL to a remote file."""
        rel = normalize_path(relative_path).lstrip("/")
        return self.root_url + quote(rel, safe="/")

    def auth_header(self) -> str:
        return basic_auth_header(self.settings.nc_user, self.settings.nc_pass)

    def _propfind(self, relative_path: str, depth: int) -> list[RemoteEntry]:
        url = self.file_url(relative_path)
        if depth and not url.endswith("/"):
            url += "/"
        try:
            response = self.session.request(
                "PROPFIND",
                url,
                data=PROPFIND_BODY.encode("utf-8"),
                headers={"Depth": str(depth), "Content-Type": "application/xml"},
            )
        except requests.RequestException as e:
            raise WebDavError(f"PROPFIND {relative_path} failed: {e}") from e
        if response.status_code != 207:
            raise WebDavError(f"PROPFIND {relative_path} returned HTTP {response.status_code}")
        return parse_multistatus(response.content, self.dav_prefix)

    def stat(self, relative_path: str) -> RemoteEntry:
        """Fetch metadata (notably the modification marker) for one path."""
        entries = self._propfind(relative_path, depth=0)
        if not entries:
            raise WebDavError(f"No PROPFIND entry for {relative_path}")
        return entries[0]

    def list_directory(self, relative_path: str) -> list[RemoteEntry]:
        """List direct children of a folder (the folder itself is excluded)."""
        target = normalize_path(relative_path)
        return [e for e in self._propfind(target, depth=1) if e.relative_path != target]

    def download(self, relative_path: str, dest: Path, max_bytes: int | None = None) -> int:
        """Stream a remote file (or its first ``max_bytes``) to ``dest``.

        Returns:
            Number of bytes written
        """
        headers = {}
        if max_bytes is not None:
            headers["Range"] = f"bytes=0-{max_bytes - 1}"

        written = 0
        last_logged = 0
        try:
            with self.session.get(
                self.file_url(relative_path), headers=headers, stream=True
            ) as response:
                if response.status_code not in (200, 206):
                    raise WebDavError(
                        f"GET {relative_path} returned HTTP {response.status_code}"
                    )
                with open(dest, "wb") as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if not chunk:
                            continue
                        # Servers that ignore Range still only get max_bytes written
                        if max_bytes is not None and written + len(chunk) > max_bytes:
                            chunk = chunk[: max_bytes - written]
                        f.write(chunk)
                        written += len(chunk)
                        if written - last_logged > PROGRESS_LOG_INTERVAL:
                            logger.info(
                                "Downloading %s... %s", relative_path, format_file_size(written)
                            )
                            last_logged = written
                        if max_bytes is not None and written >= max_bytes:
                            break
        except requests.RequestException as e:
            raise WebDavError(f"GET {relative_path} failed: {e}") from e
        return written
