"""Deterministic proximity matching between subscription zones and listings.

Matching is a filtering decision: zones with a bad radius or center and
listings without coordinates are skipped, never reported as errors.
"""

from __future__ import annotations

from datetime import datetime, timezone

from src.models import (
    ListingLocation,
    MatchResult,
    SubscriptionZone,
)
from src.utils.geo import coerce_radius, distance_km, normalize_geo
from src.utils.logging_config import logger

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def zone_from_document(doc: dict) -> SubscriptionZone:
    """Build a zone from a subscriptions document (with its id merged in)."""

    location = doc.get("location") or {}
    return SubscriptionZone(
        id=str(doc.get("id", "")),
        owner_id=str(doc.get("userId", "")),
        enabled=doc.get("enabled") is True,
        center=normalize_geo(location.get("geo") if isinstance(location, dict) else None),
        radius_km=coerce_radius(doc.get("radiusKm")),
        notify_email=doc.get("userEmail") or doc.get("email") or None,
        label=str(doc.get("name") or ""),
    )


def location_from_document(doc: dict) -> ListingLocation:
    """Build a listing location from a postsPlace document."""

    created_at = doc.get("createdAt")
    return ListingLocation(
        post_id=str(doc.get("postId") or doc.get("id") or ""),
        geo=normalize_geo(doc.get("geo")),
        place_label=doc.get("placeNamePlace") or doc.get("placeName"),
        description=doc.get("descriptionPlace"),
        created_at=created_at if isinstance(created_at, datetime) else None,
    )


def is_zone_matchable(zone: SubscriptionZone) -> bool:
    return zone.enabled and zone.radius_km is not None and zone.center is not None


def match_zones_for_listing(
    listing: ListingLocation, zones: list[SubscriptionZone]
) -> list[MatchResult]:
    """Return every zone whose circle contains the listing (publish time).

    The boundary is inclusive: a listing exactly ``radius_km`` away matches.
    """

    if listing.geo is None:
        return []

    matches: list[MatchResult] = []
    skipped = 0
    for zone in zones:
        if not is_zone_matchable(zone):
            skipped += 1
            continue
        dist = distance_km(zone.center, listing.geo)
        if dist <= zone.radius_km:
            matches.append(
                MatchResult(zone_id=zone.id, post_id=listing.post_id, distance_km=dist)
            )

    logger.debug(
        "match_zones_for_listing zones=%s matched=%s skipped=%s",
        len(zones),
        len(matches),
        skipped,
    )
    return matches


def match_listings_for_zones(
    zones: list[SubscriptionZone], locations: list[ListingLocation]
) -> list[tuple[ListingLocation, float]]:
    """Return listings inside any of the zones (dashboard time).

    Each listing appears once, paired with the distance to the nearest zone
    that contains it. Input order is preserved.
    """

    active = [zone for zone in zones if is_zone_matchable(zone)]
    seen: set[str] = set()
    within: list[tuple[ListingLocation, float]] = []

    for location in locations:
        if location.geo is None or not location.post_id or location.post_id in seen:
            continue
        in_range = [
            dist
            for dist, zone in (
                (distance_km(zone.center, location.geo), zone) for zone in active
            )
            if dist <= zone.radius_km
        ]
        if not in_range:
            continue
        seen.add(location.post_id)
        within.append((location, min(in_range)))

    logger.debug(
        "match_listings_for_zones zones=%s scanned=%s matched=%s",
        len(active),
        len(locations),
        len(within),
    )
    return within


def sort_by_recency(posts: list[dict], key: str = "createdAt") -> list[dict]:
    """Sort serialized posts newest first; undated posts go last."""

    def _timestamp(post: dict) -> datetime:
        value = post.get(key)
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value)
            except ValueError:
                return _EPOCH
        if not isinstance(value, datetime):
            return _EPOCH
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    return sorted(posts, key=_timestamp, reverse=True)
