"""Canvas controller for one open family tree.

The controller owns the authoritative member and relationship lists of the
tree. Every mutation goes to the record store first and touches local state
only once the store has accepted it. The display graph is derived from the
lists on demand and never stored.
"""

import logging
from collections.abc import Mapping

from connect_mode import (
    ConnectionAuthoring,
    LinkRejected,
    LinkRequest,
    classify_handle_link,
    describe,
    validate_link,
)
from family_graph import build_display_graph, grid_position, is_junction_id
from gedcom_io import GedcomImport, export_tree, read_gedcom
from models import (
    DisplayGraph,
    Member,
    NodeLayout,
    Relationship,
    RelationshipType,
    Tree,
)
from services import RecordStore, StoreError

logger = logging.getLogger("kincanvas.canvas")


class InvalidInput(ValueError):
    """User input rejected before reaching the store."""


def clean_name(name: str | None) -> str:
    """Trim a member name, rejecting blanks."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidInput("Name is required.")
    return cleaned


def parse_birth_year(value: str | int | None) -> int | None:
    """Parse an optional birth year field; blank means unknown."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    value = value.strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        raise InvalidInput(f"Birth year must be a whole number, got '{value}'.") from None


class CanvasController:
    """
    Mediates between the record store, the display graph and user gestures.

    Args:
        tree: The open tree
        store: Record store used for every write
        members: Members of the tree, in creation order
        relationships: Relationships of the tree
    """

    def __init__(
        self,
        tree: Tree,
        store: RecordStore,
        members: list[Member] | None = None,
        relationships: list[Relationship] | None = None,
    ):
        self.tree = tree
        self.store = store
        self.members: list[Member] = list(members or [])
        self.relationships: list[Relationship] = list(relationships or [])
        self.authoring = ConnectionAuthoring()
        self.editing_member_id: str | None = None

    @classmethod
    async def load(cls, store: RecordStore, tree: Tree) -> "CanvasController":
        """Read a tree's members and relationships from the store."""
        member_rows = await store.select("members", {"tree_id": tree.id}, order_by="created_at")
        rel_rows = await store.select("relationships", {"tree_id": tree.id})
        logger.info(
            f"Loaded tree {tree.id}: {len(member_rows)} members, {len(rel_rows)} relationships"
        )
        return cls(
            tree,
            store,
            [Member(**row) for row in member_rows],
            [Relationship(**row) for row in rel_rows],
        )

    # ------------------------------------------------------------------
    # Lookups and derived view
    # ------------------------------------------------------------------

    def find_member(self, member_id: str) -> Member | None:
        for member in self.members:
            if member.id == member_id:
                return member
        return None

    def display_graph(self, layout: Mapping[str, NodeLayout] | None = None) -> DisplayGraph:
        graph = build_display_graph(
            self.members,
            self.relationships,
            layout,
            selected_source_id=self.authoring.source_id,
        )
        logger.debug(f"Display graph: {len(graph.nodes)} nodes, {len(graph.edges)} edges")
        return graph

    def snapshot(self, layout: Mapping[str, NodeLayout] | None = None, message: str | None = None) -> dict:
        """Everything the client needs to redraw the canvas."""
        return {
            "tree": self.tree,
            "graph": self.display_graph(layout),
            "connect": describe(self.authoring.state),
            "editing_member_id": self.editing_member_id,
            "message": message,
        }

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    async def add_member(self, name: str, birth_year: str | int | None = None) -> Member:
        name = clean_name(name)
        year = parse_birth_year(birth_year)
        position = grid_position(len(self.members))

        try:
            row = await self.store.insert("members", {
                "tree_id": self.tree.id,
                "name": name,
                "birth_year": year,
                "position_x": position.x,
                "position_y": position.y,
            })
        except StoreError as e:
            logger.error(f"Error adding member: {e}")
            raise

        member = Member(**row)
        self.members.append(member)
        logger.info(f"Added member {member.id} ('{name}') to tree {self.tree.id}")
        return member

    async def edit_member(self, member_id: str, name: str, birth_year: str | int | None = None) -> Member | None:
        """Update a member in place. Returns None if the member is gone."""
        name = clean_name(name)
        year = parse_birth_year(birth_year)
        if self.find_member(member_id) is None:
            logger.debug(f"Edit of unknown member {member_id} ignored")
            return None

        try:
            row = await self.store.update("members", member_id, {"name": name, "birth_year": year})
        except StoreError as e:
            logger.error(f"Error updating member: {e}")
            raise

        updated = Member(**row)
        self.members = [updated if m.id == member_id else m for m in self.members]
        self.close_editor()
        logger.info(f"Updated member {member_id}")
        return updated

    async def delete_member(self, member_id: str) -> bool:
        """
        Delete a member and every relationship touching it.

        Relationships go first, then the member. If the second step fails
        the member survives without its links.
        """
        if self.find_member(member_id) is None:
            return False

        try:
            await self.store.delete_relationships_touching(member_id)
        except StoreError as e:
            logger.error(f"Error deleting relationships of member {member_id}: {e}")
            raise
        removed = [rel.id for rel in self.relationships if rel.touches(member_id)]
        self.relationships = [rel for rel in self.relationships if not rel.touches(member_id)]

        try:
            await self.store.delete("members", member_id)
        except StoreError as e:
            logger.error(f"Error deleting member {member_id}: {e}")
            raise
        self.members = [m for m in self.members if m.id != member_id]

        if self.editing_member_id == member_id:
            self.close_editor()
        logger.info(f"Deleted member {member_id} and {len(removed)} relationships")
        return True

    async def reposition(self, node_id: str, x: float, y: float) -> Member | None:
        """Persist a drag-end position. Junctions and unknown ids are ignored."""
        if is_junction_id(node_id) or self.find_member(node_id) is None:
            return None

        try:
            row = await self.store.update("members", node_id, {"position_x": x, "position_y": y})
        except StoreError as e:
            logger.error(f"Error saving position of {node_id}: {e}")
            raise

        moved = Member(**row)
        self.members = [moved if m.id == node_id else m for m in self.members]
        return moved

    def open_editor(self, member_id: str) -> Member | None:
        member = self.find_member(member_id)
        if member is not None:
            self.editing_member_id = member_id
        return member

    def close_editor(self) -> None:
        self.editing_member_id = None

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    async def create_relationship(self, request: LinkRequest) -> Relationship:
        """
        Validate and persist a new relationship.

        Raises:
            LinkRejected: self-link, duplicate pair or unknown member
            StoreError: the store refused the insert
        """
        validate_link(request, self.relationships)
        for member_id in (request.source_id, request.target_id):
            if self.find_member(member_id) is None:
                raise LinkRejected("That person is no longer on this tree.")

        try:
            row = await self.store.insert("relationships", {
                "tree_id": self.tree.id,
                "source_id": request.source_id,
                "target_id": request.target_id,
                "type": request.type.value,
            })
        except StoreError as e:
            logger.error(f"Error creating relationship: {e}")
            raise

        rel = Relationship(**row)
        self.relationships.append(rel)
        logger.info(f"Linked {rel.source_id} -> {rel.target_id} as {rel.type.value}")
        return rel

    async def delete_edge(self, edge_id: str) -> list[str]:
        """
        Delete the relationships behind a display edge.

        One junction edge can stand for several relationships; each is
        deleted in turn and dropped locally once the store confirms it.
        Returns the ids actually deleted.
        """
        edge = self.display_graph().edge(edge_id)
        if edge is None:
            logger.debug(f"Delete of unknown edge {edge_id} ignored")
            return []

        deleted: list[str] = []
        for rel_id in edge.raw_edge_ids:
            try:
                await self.store.delete("relationships", rel_id)
            except StoreError as e:
                logger.error(f"Error deleting relationship {rel_id}: {e}")
                raise
            self.relationships = [rel for rel in self.relationships if rel.id != rel_id]
            deleted.append(rel_id)

        logger.info(f"Deleted edge {edge_id} ({len(deleted)} relationships)")
        return deleted

    # ------------------------------------------------------------------
    # Connect gesture
    # ------------------------------------------------------------------

    def press_toolbar(self, mode: RelationshipType) -> None:
        self.authoring.press_toolbar(mode)

    def click_pane(self) -> None:
        self.authoring.click_pane()

    async def click_node(self, node_id: str) -> Relationship | None:
        """
        Feed a node click into the connect gesture.

        When the click completes a pair, the link is attempted and the
        gesture disarms whether or not it succeeded.
        """
        request = self.authoring.click_node(node_id)
        if request is None:
            return None
        try:
            return await self.create_relationship(request)
        finally:
            self.authoring.reset()

    async def connect_handles(
        self,
        source_id: str,
        source_handle: str | None,
        target_id: str,
        target_handle: str | None,
    ) -> Relationship | None:
        """Create a link from a handle drag; unusable handle pairs do nothing."""
        request = classify_handle_link(source_id, source_handle, target_id, target_handle)
        if request is None:
            return None
        return await self.create_relationship(request)

    # ------------------------------------------------------------------
    # Tree name
    # ------------------------------------------------------------------

    async def commit_tree_name(self, draft: str | None) -> str:
        """
        Save an edited tree name (blur or Enter).

        Blank drafts and unchanged names are not sent. On failure the
        previous name stays in place and the error propagates.
        """
        name = (draft or "").strip()
        if not name or name == self.tree.name:
            return self.tree.name

        try:
            row = await self.store.update("trees", self.tree.id, {"name": name})
        except StoreError as e:
            logger.error(f"Error renaming tree {self.tree.id}: {e}")
            raise

        self.tree = Tree(**row)
        logger.info(f"Renamed tree {self.tree.id} to '{self.tree.name}'")
        return self.tree.name

    def cancel_tree_name(self) -> str:
        """Escape: drop the draft and keep the stored name."""
        return self.tree.name

    # ------------------------------------------------------------------
    # GEDCOM
    # ------------------------------------------------------------------

    def export_gedcom(self) -> str:
        return export_tree(self.tree, self.members, self.relationships)

    async def import_gedcom(self, content: str) -> GedcomImport:
        """
        Add the people and links of a GEDCOM file to this tree.

        Each record is appended once its insert succeeds, so a store failure
        part way leaves the earlier records in place.
        """
        parsed = read_gedcom(content)
        logger.info(
            f"Importing {len(parsed.people)} people and {len(parsed.links)} links into {self.tree.id}"
        )

        ids: dict[str, str] = {}
        for person in parsed.people:
            member = await self.add_member(person.name, person.birth_year)
            ids[person.pointer] = member.id

        for source, target, rel_type in parsed.links:
            request = LinkRequest(ids[source], ids[target], rel_type)
            try:
                await self.create_relationship(request)
            except LinkRejected as e:
                parsed.skipped.append(f"{source} -> {target}: {e}")
                logger.warning(f"Skipped GEDCOM link {source} -> {target}: {e}")

        return parsed
