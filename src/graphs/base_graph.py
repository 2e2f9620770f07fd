"""Base class for the matcher graphs: shared store access, logging and compile."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Mapping, Optional

from langgraph.graph import StateGraph

from src.tools.firestore_tools import FirestoreStore
from src.utils.errors import FirestoreUnavailableError, GraphExecutionError
from src.utils.logging_config import logger


class BaseGraph(ABC):
    """Abstract base class for graphs that read listings and zones.

    Holds the Firestore store every graph reads from and provides a
    consistent compile pattern so subclasses focus on node logic.
    """

    def __init__(self, store: FirestoreStore, timeout: int = 30):
        self.store = store
        self.timeout = timeout
        self.logger = logger

    @abstractmethod
    def build_graph(self) -> StateGraph:
        """Build and return the StateGraph instance."""

    def _log_node_execution(self, node_name: str, state: dict) -> None:
        """Log node entry with the state keys only; values may hold emails."""

        self.logger.debug("Executing node: %s keys=%s", node_name, sorted(state))

    def _log_node_error(self, node_name: str, error: Exception) -> None:
        self.logger.error("Node %s failed: %s", node_name, str(error))

    def _category_label(
        self, post: dict, categories: Optional[Mapping[str, str]] = None
    ) -> str:
        """Human category name for a post.

        Looks the ``categoryId`` up in ``categories`` when a preloaded map is
        given, otherwise asks the store. Falls back to the names denormalized
        onto the post itself.
        """

        category_id = post.get("categoryId")
        if category_id:
            if categories is not None:
                name = categories.get(str(category_id))
            else:
                try:
                    name = self.store.get_category_name(str(category_id))
                except FirestoreUnavailableError as exc:
                    self.logger.warning("Failed to load category name: %s", str(exc))
                    name = None
            if name:
                return name
        return str(post.get("categoryName") or post.get("category") or "")

    def compile(self):
        """Build and compile the graph for execution."""

        try:
            graph = self.build_graph()
            return graph.compile()
        except Exception as exc:
            raise GraphExecutionError(
                f"Failed to compile {self.__class__.__name__}: {exc}"
            ) from exc
