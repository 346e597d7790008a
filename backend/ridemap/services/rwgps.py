"""RideWithGPS client for downloading raw trip payloads.

Trips are listed page by page for the configured user and downloaded one
at a time into ``settings.raw_rides_dir`` as ``<id>.json``, which is the
input of the preprocessing pipeline. Downloads are cached: a trip whose
file already exists is read from disk instead of the network.

Requests that fail with an authorization error (401/403) are not retried,
since the token must be fixed first. Any other non-2xx response is retried
a fixed number of times with a fixed pause before a FetchError is raised.

Example:
    Download every ride not yet in the metadata store:
        >>> from ridemap.core.config import get_settings
        >>> from ridemap.db import database
        >>> from ridemap.services import rwgps

        >>> settings = get_settings()
        >>> repo = database.get_ride_repository(settings)
        >>> with rwgps.RideWithGPSClient(settings) as client:
        ...     downloaded = rwgps.download_new_rides(client, repo)
"""

from __future__ import annotations

import datetime
import json
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx
import tenacity

if TYPE_CHECKING:
    from collections.abc import Callable, Collection

    from ridemap.core import config
    from ridemap.db import database

logger = logging.getLogger(__name__)

LAST_FETCH_KEY = "last_fetch_ts"


class FetchError(RuntimeError):
    """Raised when a RideWithGPS request fails after all retries."""


class AuthorizationError(FetchError):
    """Raised when RideWithGPS rejects the configured credentials."""


class _RetryableStatusError(FetchError):
    def __init__(self, url: str, response: httpx.Response) -> None:
        super().__init__(f"HTTP {response.status_code} from {url}")
        self.response = response


class RideWithGPSClient:
    """Thin synchronous wrapper around the RideWithGPS JSON API.

    Args:
        settings: Settings carrying credentials, retry policy and the
            raw ride cache directory.
        http_client: Optional preconfigured httpx client (used in tests
            with ``httpx.MockTransport``).
        sleep: Pause function used between retries.

    Raises:
        FetchError: If the token or user id is not configured.
    """

    def __init__(
        self,
        settings: config.Settings,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not settings.rwgps_token:
            raise FetchError("RWGPS_TOKEN missing - add it to your .env file")
        if not settings.rwgps_user_id:
            raise FetchError("RWGPS_USER_ID missing - add it to your .env file")
        self.settings = settings
        self.base_url = str(settings.rwgps_base_url).rstrip("/")
        self._client = http_client or httpx.Client(
            timeout=httpx.Timeout(60.0, connect=15.0),
            headers={"Accept": "application/json"},
        )
        self._sleep = sleep

    def __enter__(self) -> RideWithGPSClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _auth_params(self) -> dict[str, str]:
        return {
            "auth_token": str(self.settings.rwgps_token),
            "api_key": self.settings.rwgps_api_key,
            "version": "2",
        }

    def _get_once(self, url: str, query: dict[str, str | int]) -> httpx.Response:
        response = self._client.get(url, params=query)
        if response.is_success:
            return response
        if response.status_code in (401, 403):
            raise AuthorizationError(
                f"Authorization error ({response.status_code}) - "
                f"{response.text or response.reason_phrase}"
            )
        raise _RetryableStatusError(url, response)

    def _get(
        self,
        path: str,
        params: dict[str, str | int] | None = None,
    ) -> httpx.Response:
        """Issue an authorized GET with the configured retry policy.

        Args:
            path: Path relative to the API root.
            params: Extra query parameters.

        Returns:
            The successful (2xx) response.

        Raises:
            AuthorizationError: On 401/403 responses.
            FetchError: When retries are exhausted.
        """
        url = f"{self.base_url}{path}"
        query = {**(params or {}), **self._auth_params()}
        attempts = self.settings.fetch_max_retries + 1
        retrying = tenacity.Retrying(
            stop=tenacity.stop_after_attempt(attempts),
            wait=tenacity.wait_fixed(self.settings.fetch_retry_delay_seconds),
            retry=tenacity.retry_if_exception_type(_RetryableStatusError),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return retrying(self._get_once, url, query)
        except _RetryableStatusError as exc:
            response = exc.response
            raise FetchError(
                f"Request to {url} failed after {attempts} attempts "
                f"(status {response.status_code} - "
                f"{response.text or response.reason_phrase})"
            ) from exc

    def fetch_activities(
        self,
        existing_ids: Collection[str] = (),
    ) -> list[dict[str, Any]]:
        """List the user's trips that are not in ``existing_ids``.

        Pages are requested with ``offset``/``limit`` until a page holds
        fewer results than the page size.
        """
        limit = self.settings.rwgps_page_limit
        path = f"/users/{self.settings.rwgps_user_id}/trips.json"
        new_trips: list[dict[str, Any]] = []
        offset = 0
        while True:
            logger.info("Requesting trips offset=%d limit=%d", offset, limit)
            payload = self._get(path, {"offset": offset, "limit": limit}).json()
            page = payload.get("results") or []
            new_trips.extend(
                trip for trip in page if str(trip.get("id")) not in existing_ids
            )
            if len(page) < limit:
                break
            offset += limit
        logger.info("Finished pagination - %d new ride(s) found", len(new_trips))
        return new_trips

    def fetch_ride(self, ride_id: str | int) -> dict[str, Any]:
        """Return the full payload of one trip, using the on-disk cache.

        Downloaded payloads have ``trip.photos`` removed before caching.
        """
        cache_path = self.settings.raw_rides_dir / f"{ride_id}.json"
        if cache_path.exists():
            return dict(json.loads(cache_path.read_text(encoding="utf-8")))

        payload = dict(self._get(f"/trips/{ride_id}.json").json())
        trip = payload.get("trip")
        if isinstance(trip, dict):
            trip.pop("photos", None)

        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return payload


def download_new_rides(
    client: RideWithGPSClient,
    repo: database.RideRepositoryProtocol,
) -> list[str]:
    """Download every trip not yet present in the metadata store.

    Records the completion time under the ``last_fetch_ts`` store key.

    Returns:
        Ids of the rides that were fetched.
    """
    existing = repo.existing_ids()
    activities = client.fetch_activities(existing)
    fetched: list[str] = []
    for activity in activities:
        ride_id = str(activity["id"])
        logger.info("Downloading ride %s", ride_id)
        client.fetch_ride(ride_id)
        fetched.append(ride_id)
    repo.set_meta(
        LAST_FETCH_KEY, datetime.datetime.now(tz=datetime.UTC).isoformat()
    )
    return fetched
