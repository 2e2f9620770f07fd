"""Geospatial utilities used for distance calculations and input cleanup."""

from __future__ import annotations

from collections.abc import Mapping
from math import atan2, cos, isfinite, radians, sin, sqrt

from src.models import ALLOWED_RADII_KM, GeoPoint

EARTH_RADIUS_METERS = 6_371_000
EARTH_RADIUS_KM = 6371.0


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Calculate distance between two lat/lng points in meters.

    Args:
        lat1: Latitude of the first point.
        lng1: Longitude of the first point.
        lat2: Latitude of the second point.
        lng2: Longitude of the second point.

    Returns:
        Distance in meters.
    """

    return haversine_km(lat1, lng1, lat2, lng2) * 1000.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Calculate distance between two lat/lng points in kilometers."""

    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    delta_lat = radians(lat2 - lat1)
    delta_lng = radians(lng2 - lng1)

    h = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(
        delta_lng / 2
    ) ** 2
    # Rounding can push h a hair above 1 for antipodal points.
    h = min(max(h, 0.0), 1.0)

    return 2 * EARTH_RADIUS_KM * atan2(sqrt(h), sqrt(1 - h))


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two normalized points, in kilometers."""

    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def _coerce_coordinate(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return None
    return number if isfinite(number) else None


def _read_field(raw: object, name: str) -> object:
    if isinstance(raw, Mapping):
        return raw.get(name)
    try:
        return getattr(raw, name, None)
    except Exception:
        # Property-backed inputs count as missing when the read fails.
        return None


def normalize_geo(raw: object) -> GeoPoint | None:
    """Coerce loosely shaped input into a GeoPoint.

    Accepts a GeoPoint, a mapping with ``lat``/``lng`` (optionally nested
    under ``geo``), or any object exposing ``lat``/``lng`` attributes.
    Numeric strings are accepted. Anything missing, non-numeric, non-finite
    or outside the valid latitude/longitude range yields ``None``. Never
    raises.
    """

    if raw is None:
        return None
    if isinstance(raw, GeoPoint):
        return raw

    source = raw
    if _read_field(raw, "lat") is None and _read_field(raw, "lng") is None:
        nested = _read_field(raw, "geo")
        if nested is None:
            return None
        source = nested

    lat = _coerce_coordinate(_read_field(source, "lat"))
    lng = _coerce_coordinate(_read_field(source, "lng"))
    if lat is None or lng is None:
        return None
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lng <= 180.0):
        return None
    return GeoPoint(lat=lat, lng=lng)


def coerce_radius(value: object) -> float | None:
    """Return the radius in km if it is one of the allowed values."""

    radius = _coerce_coordinate(value)
    if radius is None or radius not in ALLOWED_RADII_KM:
        return None
    return radius


def is_allowed_radius(value: object) -> bool:
    return coerce_radius(value) is not None
