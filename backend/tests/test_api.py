"""
API tests: FastAPI app wired to a fake object store and a temporary database.
"""
import time

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

import config
import db
from collab import notifications as notifications_module
from collab.sessions import EditingSessionRegistry
from storage.folder_tree import encode_forest
from storage.models import FolderNode
from storage.object_store import ConflictException, RemoteException

OWNER = {"X-User-Id": "owner"}


@pytest.fixture
def sessions():
    return EditingSessionRegistry()


@pytest.fixture
def client(tmp_path, monkeypatch, fake_store, sessions):
    import api.dependencies as dependencies
    from main import app

    monkeypatch.setattr(config, "DB_PATH", tmp_path / "documents.db")
    monkeypatch.setattr(dependencies, "make_store", lambda credentials: fake_store)
    monkeypatch.setattr(dependencies, "editing_sessions", sessions)

    with TestClient(app) as client:
        notifications_module.notification_hub.poll_timeout = 0.05
        db.upsert_user("owner", github_login="acme-owner", access_token="token")
        db.create_project("p1", "handbook", "owner", org="acme")
        yield client


def commit_body(**overrides):
    body = {
        "project_id": "p1",
        "content": [{"path": "simpledocs/files/a.json", "changed_content": "e30="}],
        "message": "edit a",
    }
    body.update(overrides)
    return body


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


# ─────────────────────────────────────────────────────────────────────────────
# Access
# ─────────────────────────────────────────────────────────────────────────────

def test_missing_user_header(client):
    assert client.post("/api/commit", json=commit_body()).status_code == 401


def test_unknown_project(client):
    response = client.get("/api/folder/nope", headers=OWNER)

    assert response.status_code == 404


def test_non_member_is_forbidden(client, fake_store):
    db.upsert_user("stranger", github_login="stranger", access_token="token")

    response = client.post("/api/commit", json=commit_body(), headers={"X-User-Id": "stranger"})

    assert response.status_code == 403
    assert fake_store.calls == []


# ─────────────────────────────────────────────────────────────────────────────
# Commits and branches
# ─────────────────────────────────────────────────────────────────────────────

def test_commit_advances_main(client, fake_store):
    response = client.post("/api/commit", json=commit_body(), headers=OWNER)

    assert response.status_code == 200
    data = response.json()
    assert data["branch"] == "main"
    assert fake_store.refs["main"] == data["commit"]
    assert fake_store.calls_named("resolve_branch_head")[0]["coords"].full_name == "acme/handbook"


def test_commit_conflict_maps_to_409(client, fake_store):
    fake_store.fail["update_branch_head"] = ConflictException("branch moved")

    response = client.post("/api/commit", json=commit_body(), headers=OWNER)

    assert response.status_code == 409
    assert fake_store.refs["main"] == "C1"


def test_remote_failure_maps_to_502(client, fake_store):
    fake_store.fail["create_tree"] = RemoteException("server error", 500)

    assert client.post("/api/commit", json=commit_body(), headers=OWNER).status_code == 502


def test_editing_branch_flow(client, fake_store):
    assert client.get("/api/branch/check/p1", headers=OWNER).json() == {"branch_name": ""}

    response = client.post("/api/branch", json={"project_id": "p1", "branch_name": "edit/owner"},
                           headers=OWNER)
    assert response.status_code == 200
    assert client.get("/api/branch/check/p1", headers=OWNER).json() == {"branch_name": "edit/owner"}

    # Commits without an explicit branch go to the editing branch
    data = client.post("/api/commit", json=commit_body(), headers=OWNER).json()
    assert data["branch"] == "edit/owner"
    assert fake_store.refs["main"] == "C1"

    published = client.post("/api/branch/publish", json={"project_id": "p1", "title": "Edits"},
                            headers=OWNER).json()
    assert published["head"] == "edit/owner"
    assert published["base"] == "main"
    assert client.get("/api/branch/check/p1", headers=OWNER).json() == {"branch_name": ""}


def test_create_existing_branch_is_409(client, fake_store):
    fake_store.refs["taken"] = "C1"

    response = client.post("/api/branch", json={"project_id": "p1", "branch_name": "taken"},
                           headers=OWNER)

    assert response.status_code == 409


def test_delete_branch(client, fake_store):
    client.post("/api/branch", json={"project_id": "p1", "branch_name": "edit/owner"}, headers=OWNER)

    response = client.delete("/api/branch/p1/edit/owner", headers=OWNER)

    assert response.status_code == 200
    assert "edit/owner" not in fake_store.refs


def test_publish_without_branch_is_404(client):
    response = client.post("/api/branch/publish", json={"project_id": "p1", "title": "Edits"},
                           headers=OWNER)

    assert response.status_code == 404


# ─────────────────────────────────────────────────────────────────────────────
# Folder tree and files
# ─────────────────────────────────────────────────────────────────────────────

def test_folder_lifecycle(client, fake_store):
    fake_store.seed_blob("simpledocs/folder/folder.json", encode_forest([FolderNode("guides", "Guides")]))

    response = client.post("/api/folder", json={
        "id": "p1",
        "parentID": "guides",
        "folder": {"id": "setup", "name": "Setup"},
    }, headers=OWNER)
    assert response.status_code == 201
    assert response.json()[0]["children"][0]["id"] == "setup"
    assert "simpledocs/files/setup.json" in fake_store.blobs

    response = client.patch("/api/folder", json={"project_id": "p1", "node_id": "setup", "name": "Install"},
                            headers=OWNER)
    assert response.json()[0]["children"][0]["name"] == "Install"

    folder = client.get("/api/folder/p1", headers=OWNER).json()
    assert folder["folders"][0]["children"] == [{"id": "setup", "name": "Install", "children": []}]
    assert folder["sha"] == fake_store.blobs["simpledocs/folder/folder.json"][1]

    response = client.delete("/api/folder/p1/setup", headers=OWNER)
    assert response.json() == [{"id": "guides", "name": "Guides", "children": []}]
    assert "simpledocs/files/setup.json" not in fake_store.blobs


def test_add_under_unknown_parent_is_404(client, fake_store):
    fake_store.seed_blob("simpledocs/folder/folder.json", encode_forest([]))

    response = client.post("/api/folder", json={
        "id": "p1",
        "parentID": "missing",
        "folder": {"id": "x", "name": "X"},
    }, headers=OWNER)

    assert response.status_code == 404


def test_files_read_and_write(client, fake_store):
    fake_store.seed_blob("simpledocs/files/a.json", "e30=")

    assert client.get("/api/files", params={"proj": "p1", "file": "a"}, headers=OWNER).json()["content"] == "e30="

    response = client.put("/api/files", json={"project_id": "p1", "file_id": "a", "content": "eyJhIjoxfQ=="},
                          headers=OWNER)

    assert response.status_code == 200
    assert fake_store.blobs["simpledocs/files/a.json"][0] == "eyJhIjoxfQ=="


def test_missing_file_is_404(client):
    response = client.get("/api/files", params={"proj": "p1", "file": "nope"}, headers=OWNER)

    assert response.status_code == 404


# ─────────────────────────────────────────────────────────────────────────────
# Notifications
# ─────────────────────────────────────────────────────────────────────────────

def test_long_poll_times_out_empty(client):
    response = client.get("/api/poll/p1", headers=OWNER)

    assert response.status_code == 204


def test_websocket_receives_commit_notification(client):
    hub = notifications_module.notification_hub
    with client.websocket_connect("/ws/p1", headers=OWNER) as websocket:
        # The handler joins the room right after accepting
        deadline = time.monotonic() + 2
        while hub.get_room_size("p1") == 0 and time.monotonic() < deadline:
            time.sleep(0.01)

        client.post("/api/commit", json=commit_body(), headers=OWNER)

        assert websocket.receive_json() == {"type": "update", "updatedBy": "owner"}


def test_long_poll_requires_membership(client):
    db.upsert_user("stranger", github_login="stranger", access_token="token")

    response = client.get("/api/poll/p1", headers={"X-User-Id": "stranger"})

    assert response.status_code == 403
    assert notifications_module.notification_hub.waiting_count("p1") == 0


@pytest.mark.parametrize("headers", [{}, {"X-User-Id": "stranger"}])
def test_websocket_requires_membership(client, headers):
    db.upsert_user("stranger", github_login="stranger", access_token="token")

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/p1", headers=headers):
            pass

    assert notifications_module.notification_hub.get_room_size("p1") == 0


# ─────────────────────────────────────────────────────────────────────────────
# Accounts, projects and members
# ─────────────────────────────────────────────────────────────────────────────

def test_save_account_stores_tokens(client):
    response = client.put("/api/account", json={
        "github_login": "hubot", "access_token": "a1", "refresh_token": "r1",
    }, headers={"X-User-Id": "u2"})

    assert response.json() == {"id": "u2", "github_login": "hubot"}
    assert db.get_user("u2")["access_token"] == "a1"


def test_create_project_initializes_folder_tree(client, fake_store):
    response = client.post("/api/projects", json={"id": "p2", "name": "notes"}, headers=OWNER)

    assert response.status_code == 201
    assert response.json()["owner_login"] == "acme-owner"
    assert db.is_member("p2", "owner")
    write = fake_store.calls_named("write_blob")[0]
    assert write["path"] == "simpledocs/folder/folder.json"
    assert write["coords"].full_name == "acme-owner/notes"
    assert client.get("/api/folder/p2", headers=OWNER).json()["folders"] == []


def test_create_project_keeps_existing_folder_tree(client, fake_store):
    existing = encode_forest([FolderNode("guides", "Guides")])
    fake_store.seed_blob("simpledocs/folder/folder.json", existing)

    response = client.post("/api/projects", json={"id": "p2", "name": "notes"}, headers=OWNER)

    assert response.status_code == 201
    assert fake_store.blobs["simpledocs/folder/folder.json"][0] == existing


def test_create_project_rolls_back_when_storage_fails(client, fake_store):
    fake_store.fail["write_blob"] = RemoteException("server error", 500)

    response = client.post("/api/projects", json={"id": "p2", "name": "notes"}, headers=OWNER)

    assert response.status_code == 502
    assert db.get_project("p2") is None


def test_create_project_rejects_duplicates_and_unknown_users(client):
    assert client.post("/api/projects", json={"id": "p1", "name": "handbook"},
                       headers=OWNER).status_code == 409
    assert client.post("/api/projects", json={"id": "p2", "name": "notes"},
                       headers={"X-User-Id": "nobody"}).status_code == 404
    assert client.post("/api/projects", json={"id": "p2", "name": "notes", "account_type": "gitlab"},
                       headers=OWNER).status_code == 422


def test_owner_adds_member(client):
    db.upsert_user("u2", github_login="hubot", access_token="token")

    response = client.post("/api/projects/p1/members", json={"user_id": "u2"}, headers=OWNER)

    assert response.status_code == 201
    assert db.is_member("p1", "u2")
    assert client.get("/api/branch/check/p1", headers={"X-User-Id": "u2"}).status_code == 200


def test_only_owner_adds_members(client):
    db.upsert_user("u2", github_login="hubot", access_token="token")
    db.upsert_user("u3", github_login="u3", access_token="token")
    db.add_member("p1", "u2")

    response = client.post("/api/projects/p1/members", json={"user_id": "u3"},
                           headers={"X-User-Id": "u2"})

    assert response.status_code == 403
    assert not db.is_member("p1", "u3")


def test_add_unknown_member_is_404(client):
    response = client.post("/api/projects/p1/members", json={"user_id": "ghost"}, headers=OWNER)

    assert response.status_code == 404


def test_add_subtree_with_taken_id_is_409(client, fake_store):
    fake_store.seed_blob("simpledocs/folder/folder.json", encode_forest([FolderNode("guides", "Guides")]))

    response = client.post("/api/folder", json={
        "id": "p1",
        "parentID": "",
        "folder": {"id": "new", "name": "New", "children": [{"id": "guides", "name": "Dup"}]},
    }, headers=OWNER)

    assert response.status_code == 409
    assert "simpledocs/files/new.json" not in fake_store.blobs
