"""Derive the drawable canvas graph from members and relationships.

Spouse pairs with children get a synthetic junction node so both partners
share a single line down to their children. Nothing here is stored: the whole
graph is rebuilt from the authoritative records on every change.
"""

from collections.abc import Mapping, Sequence

from models import (
    DisplayEdge,
    DisplayGraph,
    DisplayNode,
    Member,
    NodeLayout,
    Position,
    Relationship,
    RelationshipType,
)


DEFAULT_NODE_WIDTH = 180.0
DEFAULT_NODE_HEIGHT = 80.0
JUNCTION_SIZE = 10.0

GRID_COLUMNS = 3
GRID_ORIGIN = 100.0
GRID_SPACING_X = 250.0
GRID_SPACING_Y = 150.0

JUNCTION_PREFIX = "junction-"


def junction_id(spouse_relationship_id: str) -> str:
    return f"{JUNCTION_PREFIX}{spouse_relationship_id}"


def is_junction_id(node_id: str) -> bool:
    return node_id.startswith(JUNCTION_PREFIX)


def grid_position(index: int) -> Position:
    """Fallback position for the member at `index` when none is stored."""
    return Position(
        x=GRID_ORIGIN + (index % GRID_COLUMNS) * GRID_SPACING_X,
        y=GRID_ORIGIN + (index // GRID_COLUMNS) * GRID_SPACING_Y,
    )


# ============================================================================
# Member nodes
# ============================================================================

def _member_node(
    member: Member,
    index: int,
    layout: NodeLayout | None,
    selected_source_id: str | None,
) -> DisplayNode:
    if layout is not None and layout.x is not None and layout.y is not None:
        position = Position(x=layout.x, y=layout.y)
    elif member.position_x is not None and member.position_y is not None:
        position = Position(x=member.position_x, y=member.position_y)
    else:
        position = grid_position(index)

    width = layout.width if layout and layout.width else DEFAULT_NODE_WIDTH
    height = layout.height if layout and layout.height else DEFAULT_NODE_HEIGHT

    return DisplayNode(
        id=member.id,
        kind="member",
        position=position,
        width=width,
        height=height,
        member=member,
        selected_source=member.id == selected_source_id,
    )


def _side_handles(source: DisplayNode, target: DisplayNode) -> tuple[str, str]:
    """Anchor a horizontal line on the facing sides of two nodes."""
    if source.position.x <= target.position.x:
        return "right", "left-target"
    return "left", "right-target"


# ============================================================================
# Junctions
# ============================================================================

def _junction_node(spouse: Relationship, a: DisplayNode, b: DisplayNode) -> DisplayNode:
    """
    Place the junction below and between a couple.

    Horizontally it sits halfway between the left partner's right edge and
    the right partner's left edge; vertically at the midpoint of the two
    vertical centres plus half the node height.
    """
    left, right = (a, b) if a.position.x <= b.position.x else (b, a)
    center_x = (left.position.x + left.width + right.position.x) / 2

    center_a = a.position.y + a.height / 2
    center_b = b.position.y + b.height / 2
    center_y = (center_a + center_b) / 2 + (a.height + b.height) / 4

    return DisplayNode(
        id=junction_id(spouse.id),
        kind="junction",
        position=Position(
            x=center_x - JUNCTION_SIZE / 2,
            y=center_y - JUNCTION_SIZE / 2,
        ),
        width=JUNCTION_SIZE,
        height=JUNCTION_SIZE,
        draggable=False,
        selectable=False,
    )


def _pass_through(rel: Relationship, nodes: Mapping[str, DisplayNode]) -> DisplayEdge:
    if rel.type == RelationshipType.SPOUSE:
        source_handle, target_handle = _side_handles(nodes[rel.source_id], nodes[rel.target_id])
    else:
        source_handle, target_handle = "bottom", "top"

    return DisplayEdge(
        id=rel.id,
        source=rel.source_id,
        target=rel.target_id,
        type=rel.type,
        raw_edge_ids=[rel.id],
        source_handle=source_handle,
        target_handle=target_handle,
    )


# ============================================================================
# Builder
# ============================================================================

def build_display_graph(
    members: Sequence[Member],
    relationships: Sequence[Relationship],
    layout: Mapping[str, NodeLayout] | None = None,
    selected_source_id: str | None = None,
) -> DisplayGraph:
    """
    Turn raw members and relationships into renderable nodes and edges.

    Args:
        members: Members of the open tree, in list order (drives grid fallback)
        relationships: Relationships of the open tree
        layout: Current on-screen geometry by node id, if the client has it
        selected_source_id: Member picked as the source of a pending link

    Returns:
        A DisplayGraph with one node per member, one junction per spouse
        relationship whose couple has children, and the edges between them.
    """
    layout = layout or {}

    member_nodes: dict[str, DisplayNode] = {}
    for index, member in enumerate(members):
        member_nodes[member.id] = _member_node(
            member, index, layout.get(member.id), selected_source_id
        )

    # Links to members that are not on the canvas are not drawn.
    live = [
        rel for rel in relationships
        if rel.source_id in member_nodes and rel.target_id in member_nodes
    ]
    spouse_edges = [rel for rel in live if rel.type == RelationshipType.SPOUSE]
    parent_edges = [rel for rel in live if rel.type == RelationshipType.PARENT]

    # dict keys keep first-seen order, so output is deterministic
    children_of: dict[str, dict[str, None]] = {}
    for rel in parent_edges:
        children_of.setdefault(rel.source_id, {})[rel.target_id] = None

    junction_nodes: list[DisplayNode] = []
    edges: list[DisplayEdge] = []
    handled: set[str] = set()

    for spouse in spouse_edges:
        a, b = spouse.source_id, spouse.target_id
        shared = dict.fromkeys(
            list(children_of.get(a, {})) + list(children_of.get(b, {}))
        )
        if not shared:
            continue

        node_a, node_b = member_nodes[a], member_nodes[b]
        junction = _junction_node(spouse, node_a, node_b)
        junction_nodes.append(junction)
        handled.add(spouse.id)

        handle_a, handle_b = _side_handles(node_a, node_b)
        edges.append(DisplayEdge(
            id=f"{spouse.id}-a",
            source=a,
            target=junction.id,
            type=RelationshipType.SPOUSE,
            raw_edge_ids=[spouse.id],
            source_handle=handle_a,
        ))
        edges.append(DisplayEdge(
            id=f"{spouse.id}-b",
            source=junction.id,
            target=b,
            type=RelationshipType.SPOUSE,
            raw_edge_ids=[spouse.id],
            target_handle=handle_b,
        ))

        for child_id in shared:
            raw_ids = [
                rel.id for rel in parent_edges
                if rel.target_id == child_id and rel.source_id in (a, b)
            ]
            handled.update(raw_ids)
            edges.append(DisplayEdge(
                id=f"{junction.id}-{child_id}",
                source=junction.id,
                target=child_id,
                type=RelationshipType.PARENT,
                raw_edge_ids=raw_ids,
                target_handle="top",
            ))

    for rel in spouse_edges + parent_edges:
        if rel.id not in handled:
            edges.append(_pass_through(rel, member_nodes))

    return DisplayGraph(
        nodes=list(member_nodes.values()) + junction_nodes,
        edges=edges,
    )
