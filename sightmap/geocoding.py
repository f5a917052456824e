import logging

import requests

from . import config

logger = logging.getLogger(__name__)

NOMINATIM_REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"
NOMINATIM_TIMEOUT_S = 10
UNKNOWN_LOCATION = "Unknown Location"

# Most specific first
ADDRESS_KEYS = (
    "neighbourhood",
    "suburb",
    "city_district",
    "town",
    "city",
    "village",
    "municipality",
    "county",
)


def location_from_coords(lat: float, lng: float, user_agent: str = config.GEOCODER_USER_AGENT) -> str:
    """Best-effort place name for a point; UNKNOWN_LOCATION on any failure."""
    params = {
        "format": "json",
        "lat": lat,
        "lon": lng,
        "zoom": 16,
        "addressdetails": 1,
    }
    try:
        r = requests.get(
            NOMINATIM_REVERSE_URL,
            params=params,
            headers={"User-Agent": user_agent},
            timeout=NOMINATIM_TIMEOUT_S,
        )
        r.raise_for_status()
        address = r.json().get("address") or {}
        if not isinstance(address, dict):
            raise ValueError("address is not an object")
    except (requests.RequestException, ValueError, AttributeError) as e:
        logger.warning("Reverse geocoding failed lat=%s lng=%s err=%r", lat, lng, e)
        return UNKNOWN_LOCATION

    for key in ADDRESS_KEYS:
        if address.get(key):
            return str(address[key])
    return UNKNOWN_LOCATION
