import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import requests

from . import config
from .errors import FeedFetchError, MalformedFeedError, TransformError
from .timeutil import parse_timestamp

logger = logging.getLogger(__name__)

# Padlet custom property keys for the wall's form fields
CUSTOM_PROPERTY_KEYS = {
    "size": "Fvkpy4pI",
    "activity": "4LxsfXZo",
    "uniform": "h36hJnEo",
    "equipment": "nnVFYm1Q",
}


class PadletFeed:
    """Paginated reader for a Padlet wall.

    Pages are followed through ``meta.next`` one at a time. Each request,
    body included, must finish within ``timeout`` seconds, and the whole
    walk within ``max_pages`` and ``max_seconds``. Hitting any bound, or a
    non-2xx response, raises and discards everything fetched so far.
    """

    def __init__(
        self,
        base_url: str = config.PADLET_BASE_URL,
        wall_id: str = config.PADLET_WALL_ID,
        timeout: float = config.FETCH_TIMEOUT,
        max_pages: int = config.FEED_MAX_PAGES,
        max_seconds: float = config.FEED_MAX_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url
        self.wall_id = wall_id
        self.timeout = timeout
        self.max_pages = max_pages
        self.max_seconds = max_seconds
        self.session = session or requests.Session()

    def close(self) -> None:
        self.session.close()

    def _get(self, params: Dict[str, str], budget: float) -> requests.Response:
        # requests' timeout only bounds each socket read; the wall-clock limit
        # on the whole call comes from waiting on a worker thread.
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="padlet-fetch")
        future = pool.submit(
            self.session.get,
            self.base_url,
            params=params,
            headers={"Accept": "application/json"},
            timeout=budget,
        )
        try:
            return future.result(timeout=budget)
        except (FutureTimeout, requests.Timeout) as e:
            raise FeedFetchError(f"Padlet API call timed out after {budget:.1f}s") from e
        except requests.RequestException as e:
            raise FeedFetchError(f"Failed to fetch from Padlet: {e}") from e
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def fetch_page(
        self, page_start: Optional[str] = None, deadline: Optional[float] = None
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Fetch one page; ``deadline`` is a time.monotonic() value the call may not run past."""
        params = {"wall_hashid": self.wall_id}
        if page_start:
            params["page_start"] = page_start
        budget = self.timeout
        if deadline is not None:
            budget = min(budget, deadline - time.monotonic())
            if budget <= 0:
                raise FeedFetchError(f"Padlet pagination exceeded {self.max_seconds}s")
        logger.info("Fetching feed page wall=%s page_start=%s", self.wall_id, page_start)
        r = self._get(params, budget)

        if not r.ok:
            raise FeedFetchError(f"Failed to fetch from Padlet: {r.status_code} {r.reason}", status=r.status_code)

        try:
            payload = r.json()
        except ValueError as e:
            raise MalformedFeedError("Padlet response is not JSON") from e
        if not isinstance(payload, dict):
            raise MalformedFeedError(f"Padlet response is a {type(payload).__name__}, expected an object")

        data = payload.get("data") or []
        if not isinstance(data, list):
            raise MalformedFeedError(f"Padlet 'data' is a {type(data).__name__}, expected a list")
        meta = payload.get("meta") or {}
        next_token = meta.get("next") if isinstance(meta, dict) else None
        return data, next_token or None

    def fetch_all(self) -> List[Dict[str, Any]]:
        started = time.monotonic()
        deadline = started + self.max_seconds
        records: List[Dict[str, Any]] = []
        token: Optional[str] = None
        pages = 0
        while True:
            if pages >= self.max_pages:
                raise FeedFetchError(f"Padlet pagination exceeded {self.max_pages} pages")
            data, token = self.fetch_page(token, deadline)
            if time.monotonic() > deadline:
                raise FeedFetchError(f"Padlet pagination exceeded {self.max_seconds}s")
            pages += 1
            records.extend(data)
            logger.info("Fetched %d records (page %d, total %d)", len(data), pages, len(records))
            if not token:
                return records


def created_at(raw: Dict[str, Any], index: int) -> datetime:
    try:
        return parse_timestamp(raw["attributes"]["created_at"])
    except (KeyError, TypeError, ValueError) as e:
        raise TransformError(f"bad created_at: {e!r}", index, _record_id(raw)) from e


def within_window(raw: Dict[str, Any], index: int, cutoff: datetime, now: datetime) -> bool:
    return cutoff <= created_at(raw, index) <= now


def _record_id(raw: Any) -> Optional[str]:
    if isinstance(raw, dict) and raw.get("id") is not None:
        return str(raw["id"])
    return None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def transform_record(raw: Dict[str, Any], index: int) -> Dict[str, Any]:
    """Map a Padlet wish into the sighting shape."""
    try:
        attrs = raw["attributes"]
        point = attrs["location_point"]
        lat = float(point["latitude"])
        lng = float(point["longitude"])
    except (KeyError, TypeError, ValueError) as e:
        raise TransformError(f"missing or invalid location_point: {e!r}", index, _record_id(raw)) from e

    custom = attrs.get("custom_properties") or {}
    if not isinstance(custom, dict):
        raise TransformError("custom_properties is not an object", index, _record_id(raw))

    item = {
        "lat": lat,
        "lng": lng,
        "location": _text(attrs.get("location_name")),
        "description": _text(attrs.get("body")),
        "time_date": created_at(raw, index),
        "image_url": _text(attrs.get("attachment")),
    }
    for field, key in CUSTOM_PROPERTY_KEYS.items():
        item[field] = _text(custom.get(key))
    return item
