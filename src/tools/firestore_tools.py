"""Firestore access for subscriptions, listing locations and listings.

The store centralizes error handling and logging so graph nodes stay focused
on orchestration logic. Graphs receive a store instance through their
constructor, which lets tests swap in an in-memory fake.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone

import firebase_admin
from firebase_admin import credentials, firestore

from src.models import GeoPoint
from src.utils.errors import (
    FirestoreUnavailableError,
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
)
from src.utils.geo import coerce_radius, normalize_geo
from src.utils.logging_config import logger

SUBSCRIPTIONS = "subscriptions"
POST_PLACES = "postsPlace"
POSTS = "posts"
CATEGORIES = "categories"
USERS = "users"
POST_PHOTOS = "postPhotos"

_db: firestore.Client | None = None


def get_db() -> firestore.Client:
    """Get a Firestore client, initializing Firebase lazily."""
    global _db

    if _db is not None:
        return _db

    try:
        if not firebase_admin._apps:
            cred_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
            if not cred_path:
                raise RuntimeError(
                    "GOOGLE_APPLICATION_CREDENTIALS is not set"
                )

            cred = credentials.Certificate(cred_path)
            firebase_admin.initialize_app(cred)

        _db = firestore.client()
        return _db

    except Exception as exc:
        logger.error("Failed to initialize Firestore: %s", exc)
        raise FirestoreUnavailableError(str(exc)) from exc


def _with_id(doc) -> dict:
    return {"id": doc.id, **(doc.to_dict() or {})}


def _chunks(items: list[str], size: int):
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _clean_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def normalize_subscription_location(raw: object) -> dict | None:
    """Validate a subscription location payload ({geo, address?, region?})."""

    if not isinstance(raw, dict):
        return None
    geo = normalize_geo(raw.get("geo"))
    if geo is None:
        return None

    location: dict = {"geo": geo.to_dict()}
    address = _clean_text(raw.get("address"))
    region = _clean_text(raw.get("region"))
    if address:
        location["address"] = address
    if region:
        location["region"] = region
    return location


class FirestoreStore:
    """Read/write helpers over the collections the alert flows depend on."""

    def __init__(self, db: firestore.Client | None = None):
        self._db = db

    @property
    def db(self) -> firestore.Client:
        if self._db is None:
            self._db = get_db()
        return self._db

    # ------------------------------------------------------------------
    # Subscriptions (read side used by the matcher)
    # ------------------------------------------------------------------

    def list_enabled_subscriptions(self) -> list[dict]:
        """Fetch all enabled subscriptions across users.

        Falls back to an unfiltered scan plus client-side filtering when the
        server-side query fails (older documents may lack the field).
        """

        collection = self.db.collection(SUBSCRIPTIONS)
        try:
            query = collection.where("enabled", "==", True)
            return [_with_id(doc) for doc in query.stream()]
        except Exception as exc:
            logger.warning(
                "Filtered subscription query failed, scanning collection: %s",
                str(exc),
            )

        try:
            docs = [_with_id(doc) for doc in collection.stream()]
        except Exception as exc:
            logger.error("Failed to load subscriptions: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc
        return [doc for doc in docs if doc.get("enabled") is True]

    def list_user_subscriptions(self, user_id: str) -> list[dict]:
        """Fetch every subscription owned by one user."""

        try:
            query = self.db.collection(SUBSCRIPTIONS).where("userId", "==", user_id)
            return [_with_id(doc) for doc in query.stream()]
        except Exception as exc:
            logger.error("Failed to load user subscriptions: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc

    def get_subscription(self, subscription_id: str) -> dict | None:
        try:
            doc = self.db.collection(SUBSCRIPTIONS).document(subscription_id).get()
        except Exception as exc:
            logger.error("Failed to load subscription: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc
        if not doc.exists:
            return None
        return _with_id(doc)

    # ------------------------------------------------------------------
    # Subscriptions (write side)
    # ------------------------------------------------------------------

    def create_subscription(
        self, user_id: str, user_email: str | None, payload: dict
    ) -> dict:
        """Validate and store a new subscription zone."""

        enabled = bool(payload.get("enabled"))
        name = _clean_text(payload.get("name"))
        if not name:
            raise InvalidInputError("Name is required")
        radius_km = coerce_radius(payload.get("radiusKm"))
        if radius_km is None:
            raise InvalidInputError("Invalid radius")
        location = normalize_subscription_location(payload.get("location"))
        if enabled and location is None:
            raise InvalidInputError("Location is required")

        now = datetime.now(timezone.utc)
        document = {
            "userId": user_id,
            "userEmail": user_email or "",
            "name": name,
            "enabled": enabled,
            "radiusKm": radius_km,
            "location": location,
            "createdAt": now,
            "updatedAt": now,
        }

        try:
            _, ref = self.db.collection(SUBSCRIPTIONS).add(document)
        except Exception as exc:
            logger.error("Failed to create subscription: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc

        logger.info("Created subscription %s for user %s", ref.id, user_id)
        return {"id": ref.id, **document}

    def _owned_subscription(self, subscription_id: str, user_id: str) -> dict:
        existing = self.get_subscription(subscription_id)
        if existing is None:
            raise NotFoundError(f"Subscription not found: {subscription_id}")
        if existing.get("userId") != user_id:
            raise PermissionDeniedError("Forbidden")
        return existing

    def update_subscription(
        self, subscription_id: str, user_id: str, payload: dict
    ) -> dict:
        """Apply a partial update to a subscription the user owns."""

        existing = self._owned_subscription(subscription_id, user_id)
        update: dict = {"updatedAt": datetime.now(timezone.utc)}

        if "name" in payload:
            name = _clean_text(payload.get("name"))
            if not name:
                raise InvalidInputError("Invalid name")
            update["name"] = name
        if "radiusKm" in payload:
            radius_km = coerce_radius(payload.get("radiusKm"))
            if radius_km is None:
                raise InvalidInputError("Invalid radius")
            update["radiusKm"] = radius_km
        if "enabled" in payload:
            update["enabled"] = bool(payload.get("enabled"))
        if "location" in payload:
            update["location"] = normalize_subscription_location(
                payload.get("location")
            )

        merged = {**existing, **update}
        # An enabled zone must always have a usable center.
        if merged.get("enabled") and normalize_geo(
            (merged.get("location") or {}).get("geo")
        ) is None:
            raise InvalidInputError("Location is required")

        try:
            self.db.collection(SUBSCRIPTIONS).document(subscription_id).update(update)
        except Exception as exc:
            logger.error("Failed to update subscription: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc

        return merged

    def delete_subscription(self, subscription_id: str, user_id: str) -> None:
        self._owned_subscription(subscription_id, user_id)
        try:
            self.db.collection(SUBSCRIPTIONS).document(subscription_id).delete()
        except Exception as exc:
            logger.error("Failed to delete subscription: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc
        logger.info("Deleted subscription %s", subscription_id)

    # ------------------------------------------------------------------
    # Listing locations
    # ------------------------------------------------------------------

    def list_recent_places(self, limit: int = 200) -> list[dict]:
        """Fetch the most recent listing locations, newest first."""

        try:
            query = (
                self.db.collection(POST_PLACES)
                .order_by("createdAt", direction=firestore.Query.DESCENDING)
                .limit(limit)
            )
            return [_with_id(doc) for doc in query.stream()]
        except Exception as exc:
            logger.error("Failed to load listing locations: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc

    def upsert_post_place(
        self,
        post_id: str,
        geo: object,
        description: str | None = None,
        place_name: str | None = None,
    ) -> GeoPoint | None:
        """Create or refresh the location mapping for a listing.

        A listing without valid coordinates loses its mapping entirely. The
        original ``createdAt`` is kept so edits do not move a listing back
        into the recent scan window.
        """

        point = normalize_geo(geo)
        ref = self.db.collection(POST_PLACES).document(post_id)

        try:
            if point is None:
                ref.delete()
                return None

            @firestore.transactional
            def _write(transaction):
                snap = ref.get(transaction=transaction)
                created_at = None
                if snap.exists:
                    created_at = (snap.to_dict() or {}).get("createdAt")
                transaction.set(
                    ref,
                    {
                        "id": post_id,
                        "postId": post_id,
                        "geo": point.to_dict(),
                        "descriptionPlace": description,
                        "placeNamePlace": place_name,
                        "createdAt": created_at or firestore.SERVER_TIMESTAMP,
                        "updatedAt": firestore.SERVER_TIMESTAMP,
                    },
                    merge=True,
                )

            _write(self.db.transaction())
            return point
        except Exception as exc:
            logger.error("Failed to upsert listing location: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc

    def delete_post_place(self, post_id: str) -> None:
        try:
            self.db.collection(POST_PLACES).document(post_id).delete()
        except Exception as exc:
            logger.error("Failed to delete listing location: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Listings, categories, users
    # ------------------------------------------------------------------

    def get_post(self, post_id: str) -> dict | None:
        try:
            doc = self.db.collection(POSTS).document(post_id).get()
        except Exception as exc:
            logger.error("Failed to load post: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc
        if not doc.exists:
            return None
        return _with_id(doc)

    def get_posts_by_ids(self, post_ids: list[str], batch_size: int = 10) -> list[dict]:
        """Fetch listings by id, one batched read per chunk of ids."""

        collection = self.db.collection(POSTS)
        posts: list[dict] = []
        try:
            for chunk in _chunks(list(post_ids), batch_size):
                refs = [collection.document(post_id) for post_id in chunk]
                for doc in self.db.get_all(refs):
                    if doc.exists:
                        posts.append(_with_id(doc))
        except Exception as exc:
            logger.error("Failed to load posts by id: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc
        return posts

    def get_visible_photos(
        self, post_ids: list[str], batch_size: int = 10
    ) -> dict[str, list[str]]:
        """Map post id to the URLs of its visible photos.

        Photos are read with one `'in'` query per chunk of ids. Records flagged
        `visible: False` and records without a URL are skipped.
        """

        ids = list(dict.fromkeys(post_id for post_id in post_ids if post_id))
        photos: dict[str, list[str]] = {}
        try:
            for chunk in _chunks(ids, batch_size):
                query = self.db.collection(POST_PHOTOS).where("postId", "in", chunk)
                for doc in query.stream():
                    data = doc.to_dict() or {}
                    url = data.get("url") or data.get("photoUrl")
                    if not url or data.get("visible") is False:
                        continue
                    photos.setdefault(data.get("postId"), []).append(url)
        except Exception as exc:
            logger.error("Failed to load post photos: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc
        return photos

    def get_categories_map(self) -> dict[str, str]:
        try:
            docs = self.db.collection(CATEGORIES).stream()
            return {doc.id: (doc.to_dict() or {}).get("name", "") for doc in docs}
        except Exception as exc:
            logger.error("Failed to load categories: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc

    def get_category_name(self, category_id: str) -> str | None:
        try:
            doc = self.db.collection(CATEGORIES).document(category_id).get()
        except Exception as exc:
            logger.error("Failed to load category: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc
        if not doc.exists:
            return None
        return (doc.to_dict() or {}).get("name")

    def get_user_email(self, user_id: str) -> str | None:
        try:
            doc = self.db.collection(USERS).document(user_id).get()
        except Exception as exc:
            logger.error("Failed to load user: %s", str(exc))
            raise FirestoreUnavailableError(str(exc)) from exc
        if not doc.exists:
            return None
        return (doc.to_dict() or {}).get("email") or None
