"""
Pytest configuration and shared fixtures for all tests.

This file is automatically loaded by pytest and provides:
  - Test configuration (env vars set before src.config is imported)
  - In-memory fakes for Firestore and the mail transport
  - Common coordinates used across matcher tests
"""

import os
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import MagicMock

# src.config builds its singleton at import time, so required variables must
# exist before any test module imports it.
TEST_ENV = {
    "FIREBASE_PROJECT_ID": "test-project",
    "GOOGLE_APPLICATION_CREDENTIALS": "/config/test-serviceAccountKey.json",
    "PUBLIC_APP_URL": "https://lostfound.test",
    "SERVICE_TOKEN": "",
    "DEBUG": "True",
}
for _key, _value in TEST_ENV.items():
    os.environ.setdefault(_key, _value)


RIGA = {"lat": 56.9496, "lng": 24.1052}
KM_PER_DEGREE_LAT = 6371.0 * 3.141592653589793 / 180.0


def north_of(point: dict, km: float) -> dict:
    """Point `km` kilometers due north of `point`."""
    return {"lat": point["lat"] + km / KM_PER_DEGREE_LAT, "lng": point["lng"]}


def subscription_doc(
    doc_id: str,
    center: dict | None = None,
    radius_km=1,
    enabled=True,
    user_id: str = "user-1",
    email: str | None = "owner@example.com",
    name: str = "Home",
) -> dict:
    return {
        "id": doc_id,
        "userId": user_id,
        "userEmail": email,
        "name": name,
        "enabled": enabled,
        "radiusKm": radius_km,
        "location": {"geo": center} if center is not None else None,
    }


class FakeStore:
    """In-memory stand-in for FirestoreStore."""

    def __init__(self):
        self.subscriptions: list[dict] = []
        self.places: list[dict] = []
        self.posts: dict[str, dict] = {}
        self.categories: dict[str, str] = {}
        self.user_emails: dict[str, str] = {}
        self.photos: dict[str, list[str]] = {}
        self.fail_on: set[str] = set()
        self.calls: list[tuple] = []

    def _record(self, name: str, *args):
        self.calls.append((name, *args))
        if name in self.fail_on:
            from src.utils.errors import FirestoreUnavailableError

            raise FirestoreUnavailableError(f"{name} unavailable")

    # builders -------------------------------------------------------
    def add_place(self, post_id: str, geo: dict | None, created_at: datetime, **extra):
        self.places.append(
            {"id": post_id, "postId": post_id, "geo": geo, "createdAt": created_at, **extra}
        )

    def add_post(self, post_id: str, **fields):
        self.posts[post_id] = {"id": post_id, **fields}

    # store API ------------------------------------------------------
    def list_enabled_subscriptions(self):
        self._record("list_enabled_subscriptions")
        return [s for s in self.subscriptions if s.get("enabled") is True]

    def list_user_subscriptions(self, user_id):
        self._record("list_user_subscriptions", user_id)
        return [s for s in self.subscriptions if s.get("userId") == user_id]

    def list_recent_places(self, limit=200):
        self._record("list_recent_places", limit)
        ordered = sorted(self.places, key=lambda p: p["createdAt"], reverse=True)
        return ordered[:limit]

    def get_post(self, post_id):
        self._record("get_post", post_id)
        return self.posts.get(post_id)

    def get_posts_by_ids(self, post_ids, batch_size=10):
        self._record("get_posts_by_ids", list(post_ids), batch_size)
        return [self.posts[i] for i in post_ids if i in self.posts]

    def get_visible_photos(self, post_ids, batch_size=10):
        self._record("get_visible_photos", list(post_ids), batch_size)
        return {i: list(self.photos[i]) for i in post_ids if i in self.photos}

    def get_categories_map(self):
        self._record("get_categories_map")
        return dict(self.categories)

    def get_category_name(self, category_id):
        self._record("get_category_name", category_id)
        return self.categories.get(category_id)

    def get_user_email(self, user_id):
        self._record("get_user_email", user_id)
        return self.user_emails.get(user_id)


class RecordingTransport:
    """Mail transport that records messages and can fail for chosen recipients."""

    def __init__(self, fail_for: set[str] | None = None):
        self.sent = []
        self.fail_for = fail_for or set()

    def send(self, message):
        if message.to in self.fail_for:
            raise ConnectionError(f"SMTP rejected {message.to}")
        self.sent.append(message)


@pytest.fixture
def now():
    return datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def notifier(transport):
    from src.tools.mail_tools import Notifier

    return Notifier(transport, base_url="https://lostfound.test", max_workers=4)


@pytest.fixture
def minutes_ago(now):
    def _at(minutes: int) -> datetime:
        return now - timedelta(minutes=minutes)

    return _at


@pytest.fixture
def mock_firebase_app(monkeypatch):
    """
    Provide a mock Firebase app for testing.

    Use this fixture in tests that need to mock Firestore calls.
    """
    mock_app = MagicMock()
    mock_db = MagicMock()

    monkeypatch.setattr("firebase_admin._apps", {"[DEFAULT]": mock_app})
    monkeypatch.setattr("firebase_admin.initialize_app", MagicMock(return_value=mock_app))
    monkeypatch.setattr("firebase_admin.firestore.client", MagicMock(return_value=mock_db))
    monkeypatch.setattr("src.tools.firestore_tools._db", None)

    return {"app": mock_app, "db": mock_db}
