"""End-to-end tests for the HTTP API in dev-bypass mode."""

import io

import pytest
from fastapi import HTTPException, UploadFile
from fastapi.testclient import TestClient

import main
from config import Settings


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main, "settings", Settings(dev_bypass_auth=True))
    with TestClient(main.app) as client:
        yield client


@pytest.fixture
def tree_id(client):
    response = client.get("/trees")
    assert response.status_code == 200
    return response.json()["trees"][0]["id"]


def add(client, tree_id, name, birth_year=None):
    response = client.post(f"/trees/{tree_id}/members", json={"name": name, "birth_year": birth_year})
    assert response.status_code == 200, response.text
    return response.json()["graph"]["nodes"][-1]["id"]


def connect(client, tree_id, mode, source, target):
    client.post(f"/trees/{tree_id}/connect/mode", json={"mode": mode})
    client.post(f"/trees/{tree_id}/connect/click", json={"node_id": source})
    return client.post(f"/trees/{tree_id}/connect/click", json={"node_id": target}).json()


class TestHealthAndAuth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["backend"] == "memory"

    def test_me_is_dev_user(self, client):
        assert client.get("/auth/me").json()["id"] == "dev-user-123"

    def test_callback_without_code(self, client):
        response = client.get("/auth/callback")
        assert response.status_code == 400
        assert response.json()["detail"] == "No authorization code provided"

    def test_reset_password_mismatch(self, client):
        response = client.post(
            "/auth/reset-password", json={"password": "secret1", "confirm_password": "secret2"}
        )
        assert response.status_code == 400


class TestTrees:

    def test_first_visit_creates_default_tree(self, client):
        trees = client.get("/trees").json()["trees"]
        assert [t["name"] for t in trees] == ["My Family Tree"]
        assert client.get("/trees").json()["trees"] == trees

    def test_new_tree(self, client, tree_id):
        response = client.post("/trees", json={})
        assert response.json()["name"] == "New Family Tree"
        assert len(client.get("/trees").json()["trees"]) == 2

    def test_unknown_tree_404(self, client):
        assert client.get("/trees/nope").status_code == 404

    def test_rename_and_cancel(self, client, tree_id):
        response = client.patch(f"/trees/{tree_id}", json={"name": "  Smiths  "})
        assert response.json()["tree"]["name"] == "Smiths"

        response = client.patch(f"/trees/{tree_id}", json={"name": "", "cancel": False})
        assert response.json()["tree"]["name"] == "Smiths"

        response = client.patch(f"/trees/{tree_id}", json={"name": "Other", "cancel": True})
        assert response.json()["tree"]["name"] == "Smiths"


class TestCanvas:

    def test_add_member_validation(self, client, tree_id):
        response = client.post(f"/trees/{tree_id}/members", json={"name": "   "})
        assert response.status_code == 400
        assert response.json()["detail"] == "Name is required."

    def test_family_scenario(self, client, tree_id):
        alice = add(client, tree_id, "Alice", "1950")
        bob = add(client, tree_id, "Bob")
        carol = add(client, tree_id, "Carol")

        connect(client, tree_id, "spouse", alice, bob)
        snapshot = connect(client, tree_id, "parent", alice, carol)

        assert snapshot["connect"]["state"] == "idle"
        node_ids = [n["id"] for n in snapshot["graph"]["nodes"]]
        junctions = [n for n in node_ids if n.startswith("junction-")]
        assert len(junctions) == 1
        edges = {e["id"]: e for e in snapshot["graph"]["edges"]}
        child_edge = edges[f"{junctions[0]}-{carol}"]
        assert child_edge["source"] == junctions[0]
        assert len(child_edge["raw_edge_ids"]) == 1

    def test_duplicate_link_reports_message(self, client, tree_id):
        alice = add(client, tree_id, "Alice")
        bob = add(client, tree_id, "Bob")
        connect(client, tree_id, "parent", alice, bob)

        snapshot = connect(client, tree_id, "spouse", bob, alice)

        assert snapshot["message"] == "These two people are already connected."
        assert snapshot["connect"]["state"] == "idle"
        assert len(snapshot["graph"]["edges"]) == 1

    def test_armed_state_marks_source(self, client, tree_id):
        alice = add(client, tree_id, "Alice")
        client.post(f"/trees/{tree_id}/connect/mode", json={"mode": "spouse"})
        snapshot = client.post(f"/trees/{tree_id}/connect/click", json={"node_id": alice}).json()

        assert snapshot["connect"] == {"state": "awaiting_second_click", "mode": "spouse", "source_id": alice}
        assert snapshot["graph"]["nodes"][0]["selected_source"]

        snapshot = client.post(f"/trees/{tree_id}/connect/pane").json()
        assert snapshot["connect"]["state"] == "idle"

    def test_handle_connect(self, client, tree_id):
        alice = add(client, tree_id, "Alice")
        bob = add(client, tree_id, "Bob")
        snapshot = client.post(f"/trees/{tree_id}/connect/handles", json={
            "source": bob, "source_handle": "top", "target": alice, "target_handle": "bottom",
        }).json()
        edge = snapshot["graph"]["edges"][0]
        assert (edge["source"], edge["target"], edge["type"]) == (alice, bob, "parent")

    def test_delete_member_cascades(self, client, tree_id):
        alice = add(client, tree_id, "Alice")
        bob = add(client, tree_id, "Bob")
        carol = add(client, tree_id, "Carol")
        connect(client, tree_id, "spouse", alice, bob)
        connect(client, tree_id, "parent", alice, carol)

        snapshot = client.delete(f"/trees/{tree_id}/members/{alice}").json()

        assert [n["id"] for n in snapshot["graph"]["nodes"]] == [bob, carol]
        assert snapshot["graph"]["edges"] == []

    def test_delete_edge(self, client, tree_id):
        alice = add(client, tree_id, "Alice")
        bob = add(client, tree_id, "Bob")
        snapshot = connect(client, tree_id, "parent", alice, bob)
        edge_id = snapshot["graph"]["edges"][0]["id"]

        snapshot = client.delete(f"/trees/{tree_id}/edges/{edge_id}").json()
        assert snapshot["graph"]["edges"] == []
        assert snapshot["message"] == "Removed 1 relationship(s)."

    def test_move_node_and_layout(self, client, tree_id):
        alice = add(client, tree_id, "Alice")
        client.post(f"/trees/{tree_id}/nodes/{alice}/position", json={"x": 5, "y": 6})
        snapshot = client.get(f"/trees/{tree_id}").json()
        assert snapshot["graph"]["nodes"][0]["position"] == {"x": 5, "y": 6}

        snapshot = client.post(
            f"/trees/{tree_id}/graph", json={"layout": {alice: {"width": 120, "height": 60}}}
        ).json()
        assert snapshot["graph"]["nodes"][0]["width"] == 120

    def test_editor_open_close(self, client, tree_id):
        alice = add(client, tree_id, "Alice")
        assert client.post(f"/trees/{tree_id}/editor/{alice}").json()["editing_member_id"] == alice
        assert client.delete(f"/trees/{tree_id}/editor").json()["editing_member_id"] is None

    def test_edit_member(self, client, tree_id):
        alice = add(client, tree_id, "Alice")
        snapshot = client.patch(
            f"/trees/{tree_id}/members/{alice}", json={"name": "Alicia", "birth_year": 1951}
        ).json()
        member = snapshot["graph"]["nodes"][0]["member"]
        assert (member["name"], member["birth_year"]) == ("Alicia", 1951)


class TestGedcom:

    def test_export_and_import(self, client, tree_id):
        alice = add(client, tree_id, "Alice Smith", "1950")
        bob = add(client, tree_id, "Bob Smith")
        connect(client, tree_id, "spouse", alice, bob)

        response = client.get(f"/trees/{tree_id}/gedcom")
        assert response.status_code == 200
        assert "1 NAME Alice /Smith/" in response.text

        other = client.post("/trees", json={"name": "Copy"}).json()["id"]
        response = client.post(
            f"/trees/{other}/gedcom",
            files={"file": ("family.ged", response.text.encode("utf-8"), "text/plain")},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["imported"]["people"] == 2
        assert body["imported"]["links"] == 1
        assert len(body["canvas"]["graph"]["edges"]) == 1

    def test_import_rejects_other_files(self, client, tree_id):
        response = client.post(
            f"/trees/{tree_id}/gedcom", files={"file": ("family.txt", b"hello", "text/plain")}
        )
        assert response.status_code == 400


class TestOpenCanvases:

    def test_tree_load_starts_fresh(self, client, tree_id):
        alice = add(client, tree_id, "Alice")
        client.post(f"/trees/{tree_id}/connect/mode", json={"mode": "parent"})
        client.post(f"/trees/{tree_id}/connect/click", json={"node_id": alice})
        client.post(f"/trees/{tree_id}/editor/{alice}")

        snapshot = client.get(f"/trees/{tree_id}").json()

        assert snapshot["connect"] == {"state": "idle", "mode": None, "source_id": None}
        assert snapshot["editing_member_id"] is None
        assert not snapshot["graph"]["nodes"][0]["selected_source"]
        assert [n["id"] for n in snapshot["graph"]["nodes"]] == [alice]

    def test_least_recently_used_canvas_evicted(self, client, tree_id):
        main.settings.max_open_canvases = 1
        other = client.post("/trees", json={"name": "Other"}).json()["id"]

        client.get(f"/trees/{tree_id}")
        client.get(f"/trees/{other}")

        assert list(main.open_canvases) == [("dev-user-123", other)]

        # an evicted canvas is reloaded on its next use
        alice = add(client, tree_id, "Alice")
        assert list(main.open_canvases) == [("dev-user-123", tree_id)]
        assert client.get(f"/trees/{tree_id}").json()["graph"]["nodes"][0]["id"] == alice

    def test_gesture_survives_between_requests(self, client, tree_id):
        alice = add(client, tree_id, "Alice")
        client.post(f"/trees/{tree_id}/connect/mode", json={"mode": "spouse"})
        snapshot = client.post(f"/trees/{tree_id}/connect/click", json={"node_id": alice}).json()
        assert snapshot["connect"]["state"] == "awaiting_second_click"
        assert client.post(f"/trees/{tree_id}/connect/pane").json()["connect"]["state"] == "idle"


@pytest.mark.anyio
async def test_upload_without_filename_rejected():
    upload = UploadFile(file=io.BytesIO(b"0 HEAD\n0 TRLR\n"), filename=None)
    with pytest.raises(HTTPException) as excinfo:
        await main.import_gedcom(file=upload, canvas=None)
    assert excinfo.value.status_code == 400
