"""Tests for the connect gesture state machine and link validation."""

import pytest

from conftest import parent, spouse
from connect_mode import (
    AwaitingFirstClick,
    AwaitingSecondClick,
    ConnectionAuthoring,
    Idle,
    LinkRejected,
    LinkRequest,
    classify_handle_link,
    describe,
    validate_link,
)
from models import RelationshipType

PARENT = RelationshipType.PARENT
SPOUSE = RelationshipType.SPOUSE


@pytest.fixture
def authoring():
    return ConnectionAuthoring()


class TestTransitions:
    """Tests for toolbar, node and pane transitions."""

    def test_starts_idle(self, authoring):
        assert authoring.state == Idle()
        assert not authoring.armed

    def test_toolbar_arms_mode(self, authoring):
        authoring.press_toolbar(PARENT)
        assert authoring.state == AwaitingFirstClick(PARENT)

    def test_first_click_selects_source(self, authoring):
        authoring.press_toolbar(PARENT)
        assert authoring.click_node("alice") is None
        assert authoring.state == AwaitingSecondClick(PARENT, "alice")
        assert authoring.source_id == "alice"

    def test_second_click_produces_request(self, authoring):
        authoring.press_toolbar(PARENT)
        authoring.click_node("alice")
        request = authoring.click_node("bob")
        assert request == LinkRequest("alice", "bob", PARENT)

    def test_same_node_twice_is_ignored(self, authoring):
        authoring.press_toolbar(SPOUSE)
        authoring.click_node("alice")
        assert authoring.click_node("alice") is None
        assert authoring.state == AwaitingSecondClick(SPOUSE, "alice")

    def test_junction_clicks_are_ignored(self, authoring):
        authoring.press_toolbar(PARENT)
        assert authoring.click_node("junction-r1") is None
        assert authoring.state == AwaitingFirstClick(PARENT)

    def test_click_while_idle_does_nothing(self, authoring):
        assert authoring.click_node("alice") is None
        assert authoring.state == Idle()

    def test_pane_click_disarms(self, authoring):
        authoring.press_toolbar(PARENT)
        authoring.click_node("alice")
        authoring.click_pane()
        assert authoring.state == Idle()
        assert authoring.source_id is None

    def test_repress_same_mode_toggles_off(self, authoring):
        authoring.press_toolbar(SPOUSE)
        authoring.click_node("alice")
        authoring.press_toolbar(SPOUSE)
        assert authoring.state == Idle()

    def test_other_mode_switches_and_clears_source(self, authoring):
        authoring.press_toolbar(PARENT)
        authoring.click_node("alice")
        authoring.press_toolbar(SPOUSE)
        assert authoring.state == AwaitingFirstClick(SPOUSE)
        assert authoring.source_id is None

    def test_reset(self, authoring):
        authoring.press_toolbar(PARENT)
        authoring.reset()
        assert authoring.state == Idle()

    def test_describe(self, authoring):
        assert describe(authoring.state) == {"state": "idle", "mode": None, "source_id": None}
        authoring.press_toolbar(PARENT)
        authoring.click_node("alice")
        assert describe(authoring.state) == {
            "state": "awaiting_second_click", "mode": PARENT, "source_id": "alice",
        }


class TestValidateLink:
    """Tests for self-link and duplicate-pair rejection."""

    def test_self_link_rejected_in_any_mode(self):
        for mode in (PARENT, SPOUSE):
            with pytest.raises(LinkRejected):
                validate_link(LinkRequest("a", "a", mode), [])

    def test_duplicate_same_direction_rejected(self):
        existing = [parent("p", "a", "b")]
        with pytest.raises(LinkRejected):
            validate_link(LinkRequest("a", "b", PARENT), existing)

    def test_duplicate_reverse_direction_any_type_rejected(self):
        existing = [parent("p", "a", "b")]
        for mode in (PARENT, SPOUSE):
            with pytest.raises(LinkRejected):
                validate_link(LinkRequest("b", "a", mode), existing)

    def test_spouse_then_parent_same_pair_rejected(self):
        with pytest.raises(LinkRejected):
            validate_link(LinkRequest("a", "b", PARENT), [spouse("s", "b", "a")])

    def test_new_pair_accepted(self):
        validate_link(LinkRequest("a", "c", PARENT), [parent("p", "a", "b")])


class TestHandleLinks:
    """Tests for classifying handle drag-connects."""

    @pytest.mark.parametrize("source_handle,target_handle", [
        ("right", "left-target"),
        ("left", "right-target"),
        ("right", "right-target"),
        ("left", "left"),
    ])
    def test_side_handles_make_spouse(self, source_handle, target_handle):
        request = classify_handle_link("a", source_handle, "b", target_handle)
        assert request == LinkRequest("a", "b", SPOUSE)

    def test_bottom_to_top_parent_is_source(self):
        assert classify_handle_link("a", "bottom", "b", "top") == LinkRequest("a", "b", PARENT)

    def test_top_to_bottom_parent_is_target(self):
        assert classify_handle_link("a", "top", "b", "bottom") == LinkRequest("b", "a", PARENT)

    @pytest.mark.parametrize("source_handle,target_handle", [
        ("right", "top"),
        ("bottom", "left-target"),
        ("top", "top"),
        ("bottom", "bottom"),
        (None, "top"),
    ])
    def test_mixed_handles_rejected(self, source_handle, target_handle):
        assert classify_handle_link("a", source_handle, "b", target_handle) is None
