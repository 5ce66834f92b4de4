"""Two-click connect gesture and link validation.

The toolbar arms a mode (parent or spouse). The first node clicked becomes the
pending source and the second one the target. Handle drags on the canvas skip
the two clicks and infer the link type from the handles used.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from family_graph import is_junction_id
from models import Relationship, RelationshipType

logger = logging.getLogger("kincanvas.connect_mode")


class LinkRejected(ValueError):
    """A proposed relationship breaks a relationship invariant."""


# ============================================================================
# States
# ============================================================================

@dataclass(frozen=True)
class Idle:
    name = "idle"


@dataclass(frozen=True)
class AwaitingFirstClick:
    mode: RelationshipType
    name = "awaiting_first_click"


@dataclass(frozen=True)
class AwaitingSecondClick:
    mode: RelationshipType
    source_id: str
    name = "awaiting_second_click"


ConnectState = Idle | AwaitingFirstClick | AwaitingSecondClick


@dataclass(frozen=True)
class LinkRequest:
    """A relationship the user asked for, not yet validated."""
    source_id: str
    target_id: str
    type: RelationshipType


def describe(state: ConnectState) -> dict:
    """JSON-friendly view of a connect state."""
    return {
        "state": state.name,
        "mode": getattr(state, "mode", None),
        "source_id": getattr(state, "source_id", None),
    }


# ============================================================================
# State machine
# ============================================================================

class ConnectionAuthoring:
    """Tracks an in-progress "link two members" gesture."""

    def __init__(self):
        self.state: ConnectState = Idle()

    @property
    def armed(self) -> bool:
        return not isinstance(self.state, Idle)

    @property
    def source_id(self) -> str | None:
        if isinstance(self.state, AwaitingSecondClick):
            return self.state.source_id
        return None

    def press_toolbar(self, mode: RelationshipType) -> ConnectState:
        """Arm `mode`, or disarm if it is already the active mode."""
        if self.armed and self.state.mode == mode:
            self.state = Idle()
        else:
            self.state = AwaitingFirstClick(mode)
        logger.debug(f"Toolbar {mode.value}: now {self.state.name}")
        return self.state

    def click_pane(self) -> ConnectState:
        self.state = Idle()
        return self.state

    def click_node(self, node_id: str) -> LinkRequest | None:
        """
        Feed a node click into the gesture.

        Returns a LinkRequest once both endpoints are known. The machine stays
        armed until reset() so the caller decides when the attempt is over.
        """
        if is_junction_id(node_id):
            return None

        state = self.state
        if isinstance(state, AwaitingFirstClick):
            self.state = AwaitingSecondClick(state.mode, node_id)
            return None
        if isinstance(state, AwaitingSecondClick):
            if node_id == state.source_id:
                return None
            return LinkRequest(state.source_id, node_id, state.mode)
        return None

    def reset(self) -> None:
        self.state = Idle()


# ============================================================================
# Validation
# ============================================================================

def validate_link(request: LinkRequest, relationships: Iterable[Relationship]) -> None:
    """
    Reject self-links and a second link between the same two members.

    Pairs are compared without direction or type: once A and B are linked
    in any way, no other link between them is accepted.

    Raises:
        LinkRejected: with a message fit to show the user
    """
    if request.source_id == request.target_id:
        raise LinkRejected("A person cannot be linked to themselves.")

    for rel in relationships:
        if rel.same_pair(request.source_id, request.target_id):
            raise LinkRejected("These two people are already connected.")


# ============================================================================
# Handle drag-connect
# ============================================================================

SIDE_HANDLES = frozenset({"left", "right", "left-target", "right-target"})


def classify_handle_link(
    source_id: str,
    source_handle: str | None,
    target_id: str,
    target_handle: str | None,
) -> LinkRequest | None:
    """
    Infer the relationship from the handles a drag connected.

    Side handles on both ends make a spouse link. Top/bottom handles make a
    parent link whose parent is always the `bottom` end, whichever way the
    user dragged. Anything else yields None.
    """
    if source_handle in SIDE_HANDLES and target_handle in SIDE_HANDLES:
        return LinkRequest(source_id, target_id, RelationshipType.SPOUSE)

    if source_handle == "bottom" and target_handle == "top":
        return LinkRequest(source_id, target_id, RelationshipType.PARENT)
    if source_handle == "top" and target_handle == "bottom":
        return LinkRequest(target_id, source_id, RelationshipType.PARENT)

    logger.debug(f"Ignoring handle drag {source_handle} -> {target_handle}")
    return None
