from fastapi.testclient import TestClient

from verbalist.api import create_app


def _client(tmp_path, token=None):
    return TestClient(create_app(db_path=tmp_path / "api.db", token=token))


def test_healthcheck(tmp_path):
    client = _client(tmp_path)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "tasks": 0}


def test_create_list_update_delete(tmp_path):
    client = _client(tmp_path)

    created = client.post("/tasks", json={"id": "A", "title": " Call mom ", "sort_order": 1})
    assert created.status_code == 201
    assert created.json()["title"] == "Call mom"

    updated = client.put("/tasks/A", json={"id": "A", "title": "Call mom", "completed": True, "sort_order": 1})
    assert updated.status_code == 200
    assert updated.json()["completed"] is True

    assert [task["id"] for task in client.get("/tasks").json()] == ["A"]

    assert client.delete("/tasks/A").status_code == 204
    assert client.get("/tasks").json() == []


def test_invalid_requests(tmp_path):
    client = _client(tmp_path)
    client.post("/tasks", json={"id": "A", "title": "One"})

    assert client.post("/tasks", json={"id": "A", "title": "Dup"}).status_code == 400
    assert client.post("/tasks", json={"id": "B", "title": "   "}).status_code == 400
    assert client.post("/tasks", json={"id": "C", "title": ""}).status_code == 422
    assert client.put("/tasks/A", json={"id": "B", "title": "One"}).status_code == 400
    assert client.put("/tasks/Z", json={"id": "Z", "title": "Ghost"}).status_code == 404


def test_batch_update_returns_only_updated_tasks(tmp_path):
    client = _client(tmp_path)
    client.post("/tasks", json={"id": "A", "title": "One", "sort_order": 1})
    client.post("/tasks", json={"id": "B", "title": "Two", "sort_order": 2})

    response = client.post(
        "/tasks/batch",
        json=[
            {"id": "A", "title": "One", "sort_order": 2},
            {"id": "B", "title": "Two", "sort_order": 1},
            {"id": "Z", "title": "Missing", "sort_order": 3},
        ],
    )

    assert response.status_code == 200
    assert {task["id"]: task["sort_order"] for task in response.json()} == {"A": 2, "B": 1}


def test_token_is_required_when_configured(tmp_path):
    client = _client(tmp_path, token="secret")

    assert client.get("/tasks").status_code == 401
    assert client.get("/tasks", headers={"Authorization": "Bearer secret"}).status_code == 200
