"""
Graph namespace manager.

Every listening graph owns a unique tag that partitions its songs and edges
from every other graph in the shared store. This module allocates tags,
checks ownership and seeds template graphs.
"""

from __future__ import annotations
import random
from typing import List, Optional

from loguru import logger

from songmap.errors import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    PartialCloneError,
    SongMapError,
)
from songmap.identifiers import generate_tag, validate_identifier
from songmap.models import GRAPH_KIND_EMPTY, GRAPH_KIND_TEMPLATE, GraphInfo
from songmap.store.base import GraphStore

COVER_COLORS = (
    "linear-gradient(135deg, #FF9A9E 0%, #FECFEF 100%)",
    "linear-gradient(135deg, #a18cd1 0%, #fbc2eb 100%)",
    "linear-gradient(135deg, #84fab0 0%, #8fd3f4 100%)",
    "linear-gradient(135deg, #cfd9df 0%, #e2ebf0 100%)",
    "linear-gradient(135deg, #667eea 0%, #764ba2 100%)",
)

DEFAULT_NAMES = {
    GRAPH_KIND_EMPTY: "My Listening Graph",
    GRAPH_KIND_TEMPLATE: "Starter Listening Graph",
}


class GraphNamespaceManager:
    def __init__(self, store: GraphStore, template_namespace: str = "base_Song",
                 template_edge_seed: int = 1, tag_attempts: int = 3, rng: Optional[random.Random] = None):
        """
        Args:
            store: Graph store holding metadata and songs
            template_namespace: Tag of the shared template graph
            template_edge_seed: Jump count given to cloned template edges
            tag_attempts: How many fresh tags to try on a collision
            rng: Random source for cover colors
        """
        self.store = store
        self.template_namespace = validate_identifier(template_namespace, "template namespace")
        self.template_edge_seed = template_edge_seed
        self.tag_attempts = tag_attempts
        self.rng = rng or random.Random()

    def get_owned_graph(self, user_id, graph_id) -> GraphInfo:
        """
        Raises:
            NotFoundError: if the graph does not exist
            ForbiddenError: if it belongs to another user
        """
        graph = self.store.get_graph(graph_id)
        if graph is None:
            raise NotFoundError(f"Graph {graph_id} not found")
        if graph.owner_id != str(user_id):
            logger.warning(f"User {user_id} denied access to graph {graph_id}")
            raise ForbiddenError(f"Graph {graph_id} is not owned by user {user_id}")
        return graph

    def resolve_namespace(self, user_id, graph_id) -> str:
        """Return the validated namespace tag of a graph owned by ``user_id``."""
        graph = self.get_owned_graph(user_id, graph_id)
        return validate_identifier(graph.tag, "namespace tag")

    def list_graphs(self, user_id) -> List[GraphInfo]:
        return self.store.list_graphs(str(user_id))

    def create_namespace(self, user_id, kind: str = GRAPH_KIND_EMPTY, name: Optional[str] = None) -> GraphInfo:
        """
        Create a graph for ``user_id``.

        Metadata is persisted first. For ``template`` graphs the shared template
        namespace is then cloned under the new tag; if that fails the metadata
        stays and PartialCloneError is raised so the caller can repair it.

        Args:
            user_id: Owner
            kind: ``empty`` or ``template``
            name: Display name; a default per kind when blank

        Returns:
            The new graph's metadata
        """
        if kind not in DEFAULT_NAMES:
            raise InvalidArgumentError(f"Unknown graph type: {kind!r}")
        display_name = name if name and name.strip() else DEFAULT_NAMES[kind]
        color = self.rng.choice(COVER_COLORS)

        graph = None
        for attempt in range(1, self.tag_attempts + 1):
            tag = generate_tag(user_id)
            try:
                graph = self.store.create_graph(str(user_id), display_name, tag, kind, color)
                break
            except ConflictError:
                logger.warning(f"Namespace tag collision on {tag} (attempt {attempt}/{self.tag_attempts})")
        if graph is None:
            raise ConflictError(f"Could not allocate a unique namespace tag after {self.tag_attempts} attempts")

        self.store.prepare_namespace(graph.tag)

        if kind == GRAPH_KIND_TEMPLATE:
            try:
                nodes, edges = self.store.clone_namespace(
                    self.template_namespace, graph.tag, self.template_edge_seed
                )
            except SongMapError as e:
                logger.error(f"Template clone into {graph.tag} failed, graph {graph.id} needs repair: {e}")
                raise PartialCloneError(f"Graph {graph.id} created but template clone failed: {e.message}", graph)
            logger.success(f"Cloned template into {graph.tag}: {nodes} songs, {edges} edges")

        logger.info(f"Created graph [{graph.id}] for user [{user_id}], tag: {graph.tag}")
        return graph

    def delete_namespace(self, user_id, graph_id) -> GraphInfo:
        """
        Delete a graph's metadata after an ownership check.

        Songs and edges under the tag are not removed.
        """
        graph = self.get_owned_graph(user_id, graph_id)
        self.store.delete_graph(graph.id)
        logger.info(f"Deleted graph [{graph_id}] for user [{user_id}]; data under {graph.tag} kept")
        return graph
