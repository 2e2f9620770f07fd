"""Dashboard graph: recent listings inside any of the viewer's zones."""

from __future__ import annotations

from datetime import datetime

from langgraph.graph import StateGraph

from src.config import config
from src.graphs.base_graph import BaseGraph
from src.models import PUBLIC_POST_STATUSES, ListingLocation
from src.state import NearbyPostsState
from src.tools.firestore_tools import FirestoreStore
from src.tools.proximity_tools import (
    is_zone_matchable,
    location_from_document,
    match_listings_for_zones,
    sort_by_recency,
    zone_from_document,
)
from src.utils.errors import FirestoreUnavailableError

NO_SUBSCRIPTIONS = "no_subscriptions"


def _with_state(state: NearbyPostsState, **updates) -> NearbyPostsState:
    """Return a new state dict with updates applied."""

    return {**state, **updates}


def _iso(value: object) -> str | None:
    return value.isoformat() if isinstance(value, datetime) else None


def _serialize_post(
    post: dict,
    place: ListingLocation,
    dist: float,
    category: str,
    photos: list[str],
) -> dict:
    return {
        "id": post["id"],
        "title": post.get("title") or "",
        "type": post.get("type") or "",
        "status": post.get("status") or "open",
        "category": category,
        "placeName": place.place_label or post.get("placeName"),
        "description": post.get("descriptionPosts")
        or post.get("description")
        or place.description
        or "",
        "createdAt": _iso(post.get("createdAt")),
        "distanceKm": round(dist, 2),
        "photos": photos,
    }


class NearbyPostsGraph(BaseGraph):
    """Reverse match: one user's zones against the recent listing window."""

    def __init__(
        self,
        store: FirestoreStore,
        scan_limit: int = 200,
        batch_size: int = 10,
        timeout: int = 30,
    ):
        super().__init__(store, timeout=timeout)
        self.scan_limit = scan_limit
        self.batch_size = batch_size

    def build_graph(self) -> StateGraph:
        graph = StateGraph(NearbyPostsState)

        graph.add_node("fetch_user_zones", self.node_fetch_user_zones)
        graph.add_node("scan_recent_places", self.node_scan_recent_places)
        graph.add_node("match_places", self.node_match_places)
        graph.add_node("load_posts", self.node_load_posts)
        graph.add_node("finalize_response", self.node_finalize_response)

        def route_after_zones(state: NearbyPostsState) -> str:
            if state.get("error") or state.get("reason") == NO_SUBSCRIPTIONS:
                return "finalize_response"
            return "scan_recent_places"

        graph.set_entry_point("fetch_user_zones")
        graph.add_conditional_edges(
            "fetch_user_zones",
            route_after_zones,
            {
                "scan_recent_places": "scan_recent_places",
                "finalize_response": "finalize_response",
            },
        )
        graph.add_edge("scan_recent_places", "match_places")
        graph.add_edge("match_places", "load_posts")
        graph.add_edge("load_posts", "finalize_response")
        graph.set_finish_point("finalize_response")

        return graph

    def node_fetch_user_zones(self, state: NearbyPostsState) -> NearbyPostsState:
        """Load the viewer's zones and keep the ones that can match."""

        user_id = state.get("user_id") or ""
        if not user_id:
            return _with_state(
                state,
                error="user_id is required for nearby_posts graph",
                error_status=400,
            )

        try:
            self._log_node_execution("fetch_user_zones", state)
            docs = self.store.list_user_subscriptions(user_id)
        except FirestoreUnavailableError as exc:
            self._log_node_error("fetch_user_zones", exc)
            return _with_state(
                state, error="Failed to load nearby posts", error_status=500
            )

        zones = [z for z in (zone_from_document(d) for d in docs) if is_zone_matchable(z)]
        if not zones:
            return _with_state(state, zones=[], reason=NO_SUBSCRIPTIONS)
        return _with_state(state, zones=zones)

    def node_scan_recent_places(self, state: NearbyPostsState) -> NearbyPostsState:
        """Read the most recent listing locations; older ones never match."""

        if state.get("error"):
            return state

        try:
            self._log_node_execution("scan_recent_places", state)
            docs = self.store.list_recent_places(limit=self.scan_limit)
        except FirestoreUnavailableError as exc:
            self._log_node_error("scan_recent_places", exc)
            return _with_state(
                state, error="Failed to load nearby posts", places=[], error_status=500
            )

        places = [p for p in (location_from_document(d) for d in docs) if p.geo]
        return _with_state(state, places=places)

    def node_match_places(self, state: NearbyPostsState) -> NearbyPostsState:
        if state.get("error"):
            return state

        self._log_node_execution("match_places", state)
        within = match_listings_for_zones(state["zones"], state.get("places", []))
        return _with_state(state, within=within)

    def node_load_posts(self, state: NearbyPostsState) -> NearbyPostsState:
        """Fetch full listings for matched ids and keep public ones."""

        if state.get("error"):
            return state

        within = state.get("within", [])
        if not within:
            return _with_state(state, posts=[])

        try:
            self._log_node_execution("load_posts", state)
            categories = self.store.get_categories_map()
            ids = [place.post_id for place, _ in within]
            posts = self.store.get_posts_by_ids(ids, batch_size=self.batch_size)
            photos = self.store.get_visible_photos(ids, batch_size=self.batch_size)
        except FirestoreUnavailableError as exc:
            self._log_node_error("load_posts", exc)
            return _with_state(
                state, error="Failed to load nearby posts", posts=[], error_status=500
            )

        by_id = {place.post_id: (place, dist) for place, dist in within}
        serialized = [
            _serialize_post(
                post,
                *by_id[post["id"]],
                self._category_label(post, categories),
                photos.get(post["id"], []),
            )
            for post in posts
            if post.get("id") in by_id
        ]
        visible = [p for p in serialized if p["status"] in PUBLIC_POST_STATUSES]
        return _with_state(state, posts=sort_by_recency(visible))

    def node_finalize_response(self, state: NearbyPostsState) -> NearbyPostsState:
        metadata = {
            "success": not state.get("error"),
            "error": state.get("error"),
            "active_zones": len(state.get("zones", [])),
            "scanned": len(state.get("places", [])),
            "matched": len(state.get("within", [])),
        }
        return _with_state(
            state, posts=state.get("posts", []), response_metadata=metadata
        )


def create_nearby_posts_graph(store: FirestoreStore | None = None):
    """Build and compile the dashboard nearby-posts graph."""

    graph_builder = NearbyPostsGraph(
        store=store or FirestoreStore(),
        scan_limit=config.NEARBY_SCAN_LIMIT,
        batch_size=config.FIRESTORE_IN_QUERY_LIMIT,
        timeout=config.GRAPH_TIMEOUT,
    )
    return graph_builder.compile()
