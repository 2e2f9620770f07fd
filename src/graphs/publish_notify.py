"""Publish-time graph: alert every zone that contains a newly public listing."""

from __future__ import annotations

from langgraph.graph import StateGraph

from src.config import config
from src.graphs.base_graph import BaseGraph
from src.models import PUBLISHED_STATUS, ListingLocation
from src.state import PublishNotifyState
from src.tools.firestore_tools import FirestoreStore
from src.tools.mail_tools import (
    Notifier,
    NotificationJob,
    SmtpMailTransport,
)
from src.tools.proximity_tools import (
    match_zones_for_listing,
    zone_from_document,
)
from src.utils.errors import FirestoreUnavailableError
from src.utils.geo import normalize_geo
from src.utils.logging_config import logger


def _with_state(state: PublishNotifyState, **updates) -> PublishNotifyState:
    """Return a new state dict with updates applied."""

    return {**state, **updates}


def should_notify(previous_status: str | None, new_status: str | None) -> bool:
    """A listing triggers alerts only when it becomes publicly visible."""

    return new_status == PUBLISHED_STATUS and previous_status != PUBLISHED_STATUS


class PublishNotifyGraph(BaseGraph):
    """Forward match: one listing fanned out to every matching zone."""

    def __init__(
        self,
        store: FirestoreStore,
        notifier: Notifier,
        timeout: int = 30,
    ):
        super().__init__(store, timeout=timeout)
        self.notifier = notifier

    def build_graph(self) -> StateGraph:
        graph = StateGraph(PublishNotifyState)

        graph.add_node("load_listing", self.node_load_listing)
        graph.add_node("check_trigger", self.node_check_trigger)
        graph.add_node("fetch_subscriptions", self.node_fetch_subscriptions)
        graph.add_node("match_zones", self.node_match_zones)
        graph.add_node("resolve_recipients", self.node_resolve_recipients)
        graph.add_node("send_notifications", self.node_send_notifications)
        graph.add_node("finalize_response", self.node_finalize_response)

        def route_after_trigger(state: PublishNotifyState) -> str:
            if state.get("error") or state.get("skipped_reason"):
                return "finalize_response"
            return "fetch_subscriptions"

        def route_after_match(state: PublishNotifyState) -> str:
            if state.get("error") or not state.get("matches"):
                return "finalize_response"
            return "resolve_recipients"

        graph.set_entry_point("load_listing")
        graph.add_edge("load_listing", "check_trigger")
        graph.add_conditional_edges(
            "check_trigger",
            route_after_trigger,
            {
                "fetch_subscriptions": "fetch_subscriptions",
                "finalize_response": "finalize_response",
            },
        )
        graph.add_edge("fetch_subscriptions", "match_zones")
        graph.add_conditional_edges(
            "match_zones",
            route_after_match,
            {
                "resolve_recipients": "resolve_recipients",
                "finalize_response": "finalize_response",
            },
        )
        graph.add_edge("resolve_recipients", "send_notifications")
        graph.add_edge("send_notifications", "finalize_response")
        graph.set_finish_point("finalize_response")

        return graph

    def node_load_listing(self, state: PublishNotifyState) -> PublishNotifyState:
        """Load the listing document unless the caller supplied it."""

        self._log_node_execution("load_listing", state)
        post_id = state.get("post_id") or ""
        post = state.get("post")
        if not post_id:
            return _with_state(
                state,
                error="post_id is required for publish_notify graph",
                error_status=400,
            )

        if post is None:
            try:
                post = self.store.get_post(post_id)
            except FirestoreUnavailableError as exc:
                self._log_node_error("load_listing", exc)
                return _with_state(state, error="Failed to load post", error_status=500)
            if post is None:
                return _with_state(
                    state, error=f"Post not found: {post_id}", error_status=404
                )

        post = {**post, "id": post_id}
        listing = ListingLocation(
            post_id=post_id,
            geo=normalize_geo(post.get("geo")),
            place_label=post.get("placeName"),
        )
        return _with_state(state, post=post, listing=listing)

    def node_check_trigger(self, state: PublishNotifyState) -> PublishNotifyState:
        """Stop early unless the listing just became public and has a location."""

        if state.get("error"):
            return state

        self._log_node_execution("check_trigger", state)
        post = state.get("post", {})
        if not should_notify(state.get("previous_status"), post.get("status")):
            return _with_state(state, skipped_reason="not_newly_published")
        if state["listing"].geo is None:
            return _with_state(state, skipped_reason="no_location")
        return state

    def node_fetch_subscriptions(self, state: PublishNotifyState) -> PublishNotifyState:
        """Load enabled zones across all users."""

        try:
            self._log_node_execution("fetch_subscriptions", state)
            docs = self.store.list_enabled_subscriptions()
            return _with_state(state, zones=[zone_from_document(d) for d in docs])
        except FirestoreUnavailableError as exc:
            self._log_node_error("fetch_subscriptions", exc)
            return _with_state(
                state,
                error="Failed to load subscriptions",
                zones=[],
                error_status=500,
            )

    def node_match_zones(self, state: PublishNotifyState) -> PublishNotifyState:
        if state.get("error"):
            return state

        self._log_node_execution("match_zones", state)
        matches = match_zones_for_listing(state["listing"], state.get("zones", []))
        return _with_state(state, matches=matches)

    def node_resolve_recipients(self, state: PublishNotifyState) -> PublishNotifyState:
        """Pick each zone's destination, falling back to the owner's email."""

        self._log_node_execution("resolve_recipients", state)
        zones = {zone.id: zone for zone in state.get("zones", [])}
        recipients: dict[str, str] = {}

        for match in state.get("matches", []):
            zone = zones[match.zone_id]
            to = zone.notify_email
            if not to and zone.owner_id:
                try:
                    to = self.store.get_user_email(zone.owner_id)
                except FirestoreUnavailableError as exc:
                    logger.warning(
                        "Failed to resolve email for zone %s: %s", zone.id, str(exc)
                    )
            if to:
                recipients[zone.id] = to

        return _with_state(
            state,
            recipients=recipients,
            category_name=self._category_label(state.get("post", {})),
        )

    def node_send_notifications(self, state: PublishNotifyState) -> PublishNotifyState:
        """Fan out alerts; individual failures are recorded, not raised."""

        self._log_node_execution("send_notifications", state)
        zones = {zone.id: zone for zone in state.get("zones", [])}
        recipients = state.get("recipients", {})
        jobs = [
            NotificationJob(
                zone=zones[match.zone_id],
                post=state["post"],
                category_name=state.get("category_name", ""),
                distance_km=match.distance_km,
                to=recipients.get(match.zone_id),
            )
            for match in state.get("matches", [])
        ]
        return _with_state(state, results=self.notifier.notify_all(jobs))

    def node_finalize_response(self, state: PublishNotifyState) -> PublishNotifyState:
        """Construct serializable notifications and response metadata."""

        results = state.get("results", [])
        delivered = sum(1 for r in results if r.delivered)
        metadata = {
            "success": not state.get("error"),
            "error": state.get("error"),
            "skipped_reason": state.get("skipped_reason"),
            "zones_scanned": len(state.get("zones", [])),
            "matched": len(state.get("matches", [])),
            "delivered": delivered,
            "failed": len(results) - delivered,
        }
        logger.info(
            "publish_notify post=%s matched=%s delivered=%s failed=%s",
            state.get("post_id"),
            metadata["matched"],
            metadata["delivered"],
            metadata["failed"],
        )
        return _with_state(
            state,
            notifications=[r.to_dict() for r in results],
            response_metadata=metadata,
        )


def create_publish_notify_graph(
    store: FirestoreStore | None = None, notifier: Notifier | None = None
):
    """Build and compile the publish-time notification graph."""

    if notifier is None:
        notifier = Notifier(
            SmtpMailTransport(config.EMAIL_SMTP_URL, config.EMAIL_FROM),
            base_url=config.PUBLIC_APP_URL,
            max_workers=config.NOTIFY_MAX_WORKERS,
        )
    graph_builder = PublishNotifyGraph(
        store=store or FirestoreStore(),
        notifier=notifier,
        timeout=config.GRAPH_TIMEOUT,
    )
    return graph_builder.compile()
