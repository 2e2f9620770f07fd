"""
Geocoding tools – resolve a free-form address to coordinates.

Used when a user saves a subscription zone by typing an address instead of
dropping a pin. Calls the Google Geocoding API over HTTP.
"""

from __future__ import annotations

import httpx
from typing import Optional

from src.config import config
from src.utils.errors import GeocodingError
from src.utils.geo import normalize_geo
from src.utils.logging_config import logger

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"


def _request(
    client: httpx.Client,
    address: str,
    api_key: str,
    country_code: Optional[str],
) -> Optional[dict]:
    params = {"address": address, "key": api_key}
    if country_code:
        params["components"] = f"country:{country_code}"
        params["region"] = country_code.lower()

    try:
        r = client.get(GEOCODE_URL, params=params)
    except httpx.HTTPError as e:
        logger.error("Geocoding request failed: %s", e)
        raise GeocodingError("Failed to fetch geocode") from e

    if not r.is_success:
        logger.error("Geocoding returned HTTP %s", r.status_code)
        raise GeocodingError("Failed to fetch geocode")

    data = r.json() if r.content else {}
    results = data.get("results") or []
    if data.get("status") != "OK" or not results:
        return None

    first = results[0] or {}
    point = normalize_geo((first.get("geometry") or {}).get("location"))
    if point is None:
        return None
    return {
        "lat": point.lat,
        "lng": point.lng,
        "formattedAddress": first.get("formatted_address"),
    }


def geocode_address(
    address: str,
    country_code: Optional[str] = None,
    client: Optional[httpx.Client] = None,
    api_key: Optional[str] = None,
) -> Optional[dict]:
    """
    Geocode an address, first biased to a country, then unbiased.

    Args:
        address: Free-form address text
        country_code: Optional ISO country code used as a bias
        client: Optional httpx client (tests pass one with a mock transport)
        api_key: Overrides GOOGLE_GEOCODING_API_KEY

    Returns:
        dict: { lat, lng, formattedAddress } or None when nothing matched

    Raises:
        GeocodingError: API key missing or API unreachable
    """
    key = api_key or config.GOOGLE_GEOCODING_API_KEY
    if not key:
        raise GeocodingError("Google geocoding API key is missing")

    address = (address or "").strip()
    if not address:
        return None

    owns_client = client is None
    http = client or httpx.Client(timeout=10.0)
    try:
        if country_code:
            biased = _request(http, address, key, country_code)
            if biased:
                return biased
        return _request(http, address, key, None)
    finally:
        if owns_client:
            http.close()
