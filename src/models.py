"""Domain records shared by the matcher, the notifier and the graphs.

Records are frozen dataclasses so a snapshot read from Firestore cannot be
mutated while a matching pass is running over it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

ALLOWED_RADII_KM: tuple[float, ...] = (0.5, 1.0, 2.0, 3.0, 4.0)
PUBLIC_POST_STATUSES: tuple[str, ...] = ("open", "resolved")
PUBLISHED_STATUS = "open"

DeliveryStatus = Literal["delivered", "failed"]


@dataclass(frozen=True, slots=True)
class GeoPoint:
    lat: float
    lng: float

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True, slots=True)
class SubscriptionZone:
    """A user's saved circular area of interest."""

    id: str
    owner_id: str
    enabled: bool
    center: GeoPoint | None
    radius_km: float | None
    notify_email: str | None = None
    label: str = ""


@dataclass(frozen=True, slots=True)
class ListingLocation:
    """Geo fact attached to a listing (one postsPlace document)."""

    post_id: str
    geo: GeoPoint | None
    place_label: str | None = None
    description: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class MatchResult:
    zone_id: str
    post_id: str
    distance_km: float

    def to_dict(self) -> dict:
        return {
            "zoneId": self.zone_id,
            "postId": self.post_id,
            "distanceKm": round(self.distance_km, 2),
        }


@dataclass(frozen=True, slots=True)
class MailMessage:
    to: str
    subject: str
    text: str
    html: str | None = None
    reply_to: str | None = None


@dataclass(frozen=True, slots=True)
class NotificationResult:
    """Outcome of one notification attempt."""

    zone_id: str
    post_id: str
    to: str | None
    status: DeliveryStatus
    reason: str | None = None

    @property
    def delivered(self) -> bool:
        return self.status == "delivered"

    def to_dict(self) -> dict:
        return {
            "zoneId": self.zone_id,
            "postId": self.post_id,
            "to": self.to,
            "status": self.status,
            "reason": self.reason,
        }
