"""Client for the localthumbs server app: capabilities, existence checks and uploads."""

from pathlib import Path
from typing import Any

import requests

from localthumbs.config import SERVER_APP_NAME, Settings
from localthumbs.services.log_service import get_log_service
from localthumbs.services.scheduler import Lane

SECRET_HEADER = "X-LocalThumbs-Secret"


class ApiError(Exception):
    """Raised when the server app returns an error or an unusable response."""


class UploadError(ApiError):
    """Raised when a thumbnail upload is not acknowledged with a success status."""


def _extract_batch_capability(payload: Any) -> bool:
    """Read capabilities.<app>.features.batch_exists from a capabilities document.

    Accepts both the raw OCS envelope and an already unwrapped ``data`` object.
    Anything missing or malformed means the capability is absent.
    """
    if not isinstance(payload, dict):
        return False
    ocs = payload.get("ocs")
    if isinstance(ocs, dict) and isinstance(ocs.get("data"), dict):
        payload = ocs["data"]
    capabilities = payload.get("capabilities")
    if not isinstance(capabilities, dict):
        return False
    app = capabilities.get(SERVER_APP_NAME)
    if not isinstance(app, dict):
        return False
    features = app.get("features")
    if not isinstance(features, dict):
        return False
    return features.get("batch_exists") is True


class ThumbnailApi:
    """HTTP calls against ``{root}/index.php/apps/localthumbs/thumbnail``."""

    def __init__(self, settings: Settings, session: requests.Session) -> None:
        self.settings = settings
        self.session = session
        self.api_base = settings.api_base
        self.headers = {"OCS-APIRequest": "true"}
        if settings.api_secret:
            self.headers[SECRET_HEADER] = settings.api_secret

    def fetch_batch_capability(self) -> bool:
        """Ask the server whether batch existence checks are supported."""
        log = get_log_service()
        try:
            response = self.session.get(
                self.settings.capabilities_url,
                headers={**self.headers, "Accept": "application/json"},
            )
            response.raise_for_status()
            supported = _extract_batch_capability(response.json())
        except (requests.RequestException, ValueError) as e:
            log.warning(
                "api",
                "capabilities_unavailable",
                f"Could not read server capabilities, assuming no batch support: {e}",
                {"error": str(e)},
            )
            return False

        log.info(
            "api",
            "capabilities_loaded",
            f"Batch existence check {'enabled' if supported else 'not available'}",
            {"batch_exists": supported},
        )
        return supported

    def exists(self, relative_path: str) -> bool:
        """Single existence check. Any error counts as 'does not exist'."""
        try:
            response = self.session.get(
                f"{self.api_base}/exists",
                params={"path": relative_path},
                headers=self.headers,
            )
            response.raise_for_status()
            return response.json().get("exists") is True
        except (requests.RequestException, ValueError, AttributeError) as e:
            get_log_service().error(
                "api",
                "exists_check_failed",
                f"Error checking remote existence of {relative_path}: {e}",
                {"path": relative_path, "error": str(e)},
            )
            return False

    def batch_exists(self, relative_paths: list[str]) -> dict[str, bool]:
        """One request for many paths.

        Raises:
            ApiError: If the server does not answer with a success status
        """
        try:
            response = self.session.post(
                f"{self.api_base}/batch_exists",
                json={"paths": relative_paths},
                headers=self.headers,
            )
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ApiError(f"Batch existence check failed: {e}") from e

        if not response.ok or not isinstance(data, dict) or data.get("status") != "success":
            message = data.get("message") if isinstance(data, dict) else None
            raise ApiError(message or f"Batch existence check returned HTTP {response.status_code}")

        results = data.get("results")
        if not isinstance(results, dict):
            raise ApiError("Batch existence check returned no results")
        return {path: value is True for path, value in results.items()}

    def upload(self, relative_path: str, thumb_path: Path) -> dict[str, Any]:
        """Upload a JPEG thumbnail for ``relative_path``.

        Raises:
            UploadError: If the server does not confirm the upload
        """
        try:
            with open(thumb_path, "rb") as fh:
                response = self.session.post(
                    f"{self.api_base}/upload",
                    data={"path": relative_path},
                    files={"thumbnail": (Path(thumb_path).name, fh, "image/jpeg")},
                    headers=self.headers,
                )
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise UploadError(f"Upload of {relative_path} failed: {e}") from e

        if not isinstance(data, dict) or data.get("status") != "success":
            message = data.get("message") if isinstance(data, dict) else None
            raise UploadError(message or f"Upload rejected with HTTP {response.status_code}")
        return data


class ExistenceResolver:
    """Decides which candidates already have a thumbnail on the server."""

    def __init__(self, api: ThumbnailApi, io_lane: Lane, batch_supported: bool = False) -> None:
        self.api = api
        self.io_lane = io_lane
        self.batch_supported = batch_supported

    def discover(self) -> bool:
        """Query the capability once; call at process start."""
        self.batch_supported = self.api.fetch_batch_capability()
        return self.batch_supported

    def resolve_batch(self, relative_paths: list[str]) -> dict[str, bool]:
        """Map each path to True when a thumbnail is confirmed to exist.

        Paths missing from the result are unconfirmed and must be processed.
        """
        if not relative_paths:
            return {}

        if self.batch_supported:
            try:
                return self.api.batch_exists(relative_paths)
            except ApiError as e:
                get_log_service().error(
                    "api",
                    "batch_exists_failed",
                    f"Batch existence check failed: {e}",
                    {"paths": len(relative_paths), "error": str(e)},
                )
                return {}

        futures = {path: self.io_lane.submit(self.api.exists, path) for path in relative_paths}
        results: dict[str, bool] = {}
        for path, future in futures.items():
            try:
                results[path] = future.result()
            except Exception as e:
                get_log_service().error(
                    "api",
                    "exists_check_failed",
                    f"Error checking remote existence of {path}: {e}",
                    {"path": path, "error": str(e)},
                )
                results[path] = False
        return results
