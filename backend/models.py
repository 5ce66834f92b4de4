"""Domain records and derived display shapes for the family tree canvas."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class RelationshipType(str, Enum):
    """Kind of link between two members. Also used as the connect mode."""
    PARENT = "parent"
    SPOUSE = "spouse"


# ============================================================================
# Persisted records
# ============================================================================

class Tree(BaseModel):
    """A family tree owned by one user."""
    id: str
    owner_id: str
    name: str
    created_at: str | None = None


class Member(BaseModel):
    """A person in a tree."""
    id: str
    tree_id: str
    name: str
    birth_year: int | None = None
    position_x: float | None = None
    position_y: float | None = None
    created_at: str | None = None


class Relationship(BaseModel):
    """
    A directed link between two members.

    For PARENT links the source is the parent and the target the child.
    For SPOUSE links direction only orients the rendered line.
    """
    id: str
    tree_id: str
    source_id: str
    target_id: str
    type: RelationshipType

    def touches(self, member_id: str) -> bool:
        return member_id in (self.source_id, self.target_id)

    def same_pair(self, a: str, b: str) -> bool:
        """True if this links a and b in either direction."""
        return {self.source_id, self.target_id} == {a, b}


# ============================================================================
# Identity
# ============================================================================

class User(BaseModel):
    id: str
    email: str | None = None


class AuthSession(BaseModel):
    """Session returned by the identity provider after sign-in."""
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    user: User


# ============================================================================
# Derived display graph (never persisted)
# ============================================================================

class Position(BaseModel):
    x: float
    y: float


class NodeLayout(BaseModel):
    """On-screen geometry the client reports for a node."""
    x: float | None = None
    y: float | None = None
    width: float | None = None
    height: float | None = None


class DisplayNode(BaseModel):
    id: str
    kind: Literal["member", "junction"]
    position: Position
    width: float
    height: float
    member: Member | None = None
    selected_source: bool = False
    draggable: bool = True
    selectable: bool = True


class DisplayEdge(BaseModel):
    id: str
    source: str
    target: str
    type: RelationshipType
    raw_edge_ids: list[str] = Field(default_factory=list)
    source_handle: str | None = None
    target_handle: str | None = None


class DisplayGraph(BaseModel):
    nodes: list[DisplayNode] = Field(default_factory=list)
    edges: list[DisplayEdge] = Field(default_factory=list)

    def node(self, node_id: str) -> DisplayNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def edge(self, edge_id: str) -> DisplayEdge | None:
        for edge in self.edges:
            if edge.id == edge_id:
                return edge
        return None
