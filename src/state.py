"""Shared LangGraph state definitions.

All graph states are TypedDicts so state is explicit and consistent across
graph nodes. Intermediate fields may hold domain dataclasses; the fields
returned to callers are JSON-serializable.
"""

from __future__ import annotations

from typing import TypedDict

from src.models import (
    ListingLocation,
    MatchResult,
    NotificationResult,
    SubscriptionZone,
)

JsonDict = dict[str, object]
JsonList = list[JsonDict]


class PublishNotifyState(TypedDict, total=False):
    """State for the publish-time notification graph."""

    # Listing that just changed status.
    post_id: str
    # Status before the change; None when the listing was just created.
    previous_status: str
    # Listing document, loaded from posts/{post_id} unless supplied.
    post: JsonDict
    # Location of the listing, normalized.
    listing: ListingLocation
    # Why the graph stopped without notifying anyone.
    skipped_reason: str
    # Enabled zones across all users.
    zones: list[SubscriptionZone]
    # Zones containing the listing.
    matches: list[MatchResult]
    # Recipient per zone id, after falling back to the owner's account email.
    recipients: dict[str, str]
    # Category display name used in the e-mail.
    category_name: str
    # One entry per delivery attempt.
    results: list[NotificationResult]
    # Serialized results returned to the caller.
    notifications: JsonList
    # Error string if any node fails.
    error: str
    # HTTP status for the error: 4xx for bad input, 5xx for store failures.
    error_status: int
    # Response metadata for observability.
    response_metadata: JsonDict


class NearbyPostsState(TypedDict, total=False):
    """State for the dashboard 'posts near my zones' graph."""

    # Viewing user.
    user_id: str
    # The user's zones that can match (enabled, valid radius and center).
    zones: list[SubscriptionZone]
    # Recent listing locations, newest first.
    places: list[ListingLocation]
    # Listings inside any zone, with the distance to the nearest zone.
    within: list[tuple[ListingLocation, float]]
    # Serialized listings returned to the caller.
    posts: JsonList
    # "no_subscriptions" when the user has no active zone.
    reason: str
    # Error string if any node fails.
    error: str
    # HTTP status for the error: 4xx for bad input, 5xx for store failures.
    error_status: int
    # Response metadata for observability.
    response_metadata: JsonDict
