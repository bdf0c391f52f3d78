import pytest
from fastapi.testclient import TestClient

from main import app


@pytest.fixture
def client(tables):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def created(client):
    response = client.post("/projects", json={"name": "Launch video"})
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def base_url(created):
    return f"/compositions/{created['composition_id']}"


def _add_text(client, base_url, label, **fields):
    payload = {"type": "text", "label": label, **fields}
    response = client.post(f"{base_url}/elements", json=payload)
    assert response.status_code == 200
    return response.json()


def _execute(client, base_url, plan, headers=None, **extra):
    return client.post(f"{base_url}/plans", json={"plan": plan, **extra}, headers=headers or {})


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True}


class TestProjects:
    def test_create_and_fetch_composition(self, client, created):
        response = client.get(f"/projects/{created['project_id']}/composition")

        assert response.status_code == 200
        body = response.json()
        assert body["compositionId"] == created["composition_id"]
        assert body["version"] == 0
        assert body["ir"]["metadata"] == {
            "width": 1920,
            "height": 1080,
            "fps": 30,
            "durationInFrames": 300,
        }
        assert body["ir"]["elements"] == []

    def test_custom_metadata(self, client):
        response = client.post(
            "/projects",
            json={"name": "Vertical", "metadata": {"width": 1080, "height": 1920, "fps": 24}},
        )
        composition_id = response.json()["composition_id"]

        body = client.get(f"/compositions/{composition_id}").json()

        assert body["ir"]["metadata"]["fps"] == 24
        assert body["ir"]["metadata"]["width"] == 1080

    def test_list_and_delete(self, client, created):
        listed = client.get("/projects").json()
        assert [p["project_id"] for p in listed["projects"]] == [created["project_id"]]

        assert client.delete(f"/projects/{created['project_id']}").status_code == 200
        assert client.get(f"/compositions/{created['composition_id']}").status_code == 404
        assert client.delete(f"/projects/{created['project_id']}").status_code == 404


class TestPlans:
    def test_add_via_plan(self, client, base_url):
        plan = {
            "operation": "add",
            "changes": {"type": "text", "from": 0, "durationInFrames": 90, "label": "Title"},
        }

        response = _execute(client, base_url, plan)

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["version"] == 1
        assert body["result"]["receipt"] == 'Added text element "Title"'
        assert len(body["result"]["updatedIR"]["elements"]) == 1

    def test_ambiguous_plan_returns_options(self, client, base_url):
        _add_text(client, base_url, "Caption")
        _add_text(client, base_url, "caption")
        plan = {
            "operation": "update",
            "selector": {"type": "byLabel", "label": "caption"},
            "changes": {"label": "Renamed"},
        }

        response = _execute(client, base_url, plan)

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is False
        assert body["version"] == 2
        assert body["result"]["needsDisambiguation"] is True
        options = body["result"]["disambiguationOptions"]
        assert len(options) == 2

        retry = _execute(
            client, base_url, plan, resolvedElementId=options[1]["elementId"]
        )
        assert retry.json()["ok"] is True
        assert retry.json()["version"] == 3

    def test_rejected_plan_is_data(self, client, base_url):
        plan = {
            "operation": "delete",
            "selector": {"type": "byId", "id": "ghost"},
            "changes": {},
        }

        response = _execute(client, base_url, plan)

        assert response.status_code == 200
        assert response.json()["ok"] is False
        assert response.json()["result"]["errorCode"] == "not_found"

    def test_stale_version_conflicts(self, client, base_url):
        _add_text(client, base_url, "Title")
        plan = {"operation": "add", "changes": {"type": "shape"}}

        response = _execute(client, base_url, plan, headers={"X-Expected-Version": "0"})

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "version_conflict"
        assert detail["expected_version"] == 0
        assert detail["current_version"] == 1

    def test_current_version_accepted(self, client, base_url):
        plan = {"operation": "add", "changes": {"type": "shape"}}

        response = _execute(client, base_url, plan, headers={"X-Expected-Version": "0"})

        assert response.status_code == 200
        assert response.json()["version"] == 1

    def test_unknown_operation_rejected(self, client, base_url):
        response = _execute(client, base_url, {"operation": "explode", "changes": {}})

        assert response.status_code == 422

    def test_missing_composition(self, client, tables):
        response = _execute(client, "/compositions/comp_missing", {"operation": "add", "changes": {"type": "text"}})

        assert response.status_code == 404


class TestElements:
    def test_update_merges_properties(self, client, base_url):
        added = _add_text(client, base_url, "Title", properties={"text": "Hello", "color": "#000000"})
        element_id = added["result"]["affectedElements"][0]

        response = client.patch(
            f"{base_url}/elements/{element_id}", json={"properties": {"fontSize": 72}}
        )

        assert response.status_code == 200
        element = response.json()["result"]["updatedIR"]["elements"][0]
        assert element["properties"]["fontSize"] == 72
        assert element["properties"]["text"] == "Hello"
        assert element["properties"]["color"] == "#000000"

    def test_invalid_update_is_400(self, client, base_url):
        element_id = _add_text(client, base_url, "Title")["result"]["affectedElements"][0]

        response = client.patch(
            f"{base_url}/elements/{element_id}", json={"properties": {"opacity": 5}}
        )

        assert response.status_code == 400

    def test_unknown_element_is_404(self, client, base_url):
        assert client.delete(f"{base_url}/elements/ghost").status_code == 404
        assert client.patch(f"{base_url}/elements/ghost", json={"label": "x"}).status_code == 404

    def test_reorder(self, client, base_url):
        a = _add_text(client, base_url, "A")["result"]["affectedElements"][0]
        b = _add_text(client, base_url, "B")["result"]["affectedElements"][0]

        missing = client.put(f"{base_url}/elements/order", json={"elementIds": [b]})
        assert missing.status_code == 400
        assert a in missing.json()["detail"]

        response = client.put(f"{base_url}/elements/order", json={"elementIds": [b, a]})
        assert response.status_code == 200
        ids = [el["id"] for el in response.json()["result"]["updatedIR"]["elements"]]
        assert ids == [b, a]

    def test_resolve_preview(self, client, base_url):
        _add_text(client, base_url, "Caption")
        _add_text(client, base_url, "Other")

        response = client.post(
            f"{base_url}/resolve",
            json={"selector": {"type": "byType", "elementType": "text"}},
        )

        assert response.status_code == 200
        result = response.json()["result"]
        assert result["isAmbiguous"] is True
        assert [o["label"] for o in result["disambiguationOptions"]] == ["Caption", "Other"]
        assert client.get(base_url).json()["version"] == 2


class TestAssets:
    def test_register_and_mark_ready(self, client, created, base_url):
        asset = client.post(
            f"/projects/{created['project_id']}/assets",
            json={"asset_type": "audio", "filename": "music.mp3"},
        ).json()
        assert asset["status"] == "uploading"

        blocked = client.post(
            f"{base_url}/elements", json={"type": "audio", "assetId": asset["asset_id"]}
        )
        assert blocked.status_code == 409

        client.patch(
            f"/assets/{asset['asset_id']}",
            json={
                "status": "ready",
                "playback_url": "https://cdn.example/music.mp3",
                "duration_seconds": 10,
            },
        )
        added = client.post(
            f"{base_url}/elements", json={"type": "audio", "assetId": asset["asset_id"]}
        )

        assert added.status_code == 200
        element = added.json()["result"]["updatedIR"]["elements"][0]
        assert element["durationInFrames"] == 300
        assert element["properties"]["src"] == "https://cdn.example/music.mp3"

        listed = client.get(f"/projects/{created['project_id']}/assets").json()
        assert [a["status"] for a in listed["assets"]] == ["ready"]

    def test_unknown_asset_status_update(self, client, created):
        response = client.patch("/assets/missing", json={"status": "ready"})

        assert response.status_code == 404


class TestHistory:
    def test_undo_redo_and_listing(self, client, base_url):
        _add_text(client, base_url, "Title")

        undone = client.post(f"{base_url}/undo").json()
        assert undone["ok"] is True
        assert undone["result"]["message"] == 'Undid: Added text element "Title"'
        assert undone["result"]["version"] == 2

        state = client.get(f"{base_url}/history/state").json()["state"]
        assert state == {
            "canUndo": False,
            "canRedo": True,
            "historyCount": 2,
            "currentVersion": 2,
        }

        redone = client.post(f"{base_url}/redo").json()
        assert redone["result"]["message"] == 'Redid: Added text element "Title"'

        history = client.get(f"{base_url}/history", params={"limit": 1}).json()
        assert history["total"] == 2
        assert len(history["snapshots"]) == 1
        assert history["snapshots"][0]["isCurrent"] is True

    def test_undo_with_nothing_to_undo(self, client, base_url):
        response = client.post(f"{base_url}/undo")

        assert response.status_code == 200
        assert response.json()["ok"] is False
        assert response.json()["result"]["message"] == "No previous state to restore"

    def test_restore_and_clear(self, client, base_url):
        _add_text(client, base_url, "A")
        _add_text(client, base_url, "B")
        snapshots = client.get(f"{base_url}/history").json()["snapshots"]
        initial = snapshots[-1]

        restored = client.post(f"{base_url}/history/{initial['snapshotId']}/restore")
        assert restored.status_code == 200
        assert client.get(base_url).json()["ir"]["elements"] == []

        assert client.post(f"{base_url}/history/missing/restore").status_code == 404

        cleared = client.delete(f"{base_url}/history").json()
        assert cleared["deleted"] == 3
        assert client.get(f"{base_url}/history").json()["total"] == 1
