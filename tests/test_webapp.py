from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from focuslog import db
from focuslog.webapp import create_app


@pytest.fixture
def client(database, pipeline):
    database.call(db.set_setting, "categorization_enabled", False)
    with TestClient(create_app(pipeline=pipeline)) as test_client:
        yield test_client


def _categories(client) -> dict[str, str]:
    return {c["name"]: c["id"] for c in client.get("/api/categories").json()["categories"]}


def _observe(client, window_id: str = "w1", **fields) -> dict:
    payload = {
        "windowId": window_id,
        "timestamp": "2026-10-19T09:00:00",
        "ownerName": "Google Chrome",
        "title": "org/repo - Google Chrome",
        "url": "https://github.com/org/repo",
    }
    payload.update(fields)
    response = client.post("/api/observations", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_startup_seeds_categories_and_reports_status(client) -> None:
    assert list(_categories(client)) == [
        "Work",
        "Personal",
        "Entertainment",
        "Communication",
        "Uncategorized",
    ]
    status = client.get("/api/status").json()
    assert status["queue_size"] == 0
    assert status["processing"] == 0


def test_observation_lifecycle(client) -> None:
    event = _observe(client, durationMs=0)
    assert event["title"] == "org/repo"
    assert event["category_id"] is None

    assert client.patch("/api/observations/w1", json={"durationMs": 4000}).json()["updated"]
    assert client.post("/api/observations/w1/end", json={"durationMs": 5000}).json()["ended"]
    assert not client.post("/api/observations/w1/end").json()["ended"]
    assert client.get(f"/api/events/{event['id']}").json()["duration_ms"] == 5000


def test_unknown_observation_fields_are_rejected(client) -> None:
    response = client.post("/api/observations", json={"windowId": "w1", "colour": "red"})

    assert response.status_code == 422


def test_events_by_date_range(client) -> None:
    _observe(client, "w1")
    _observe(client, "w2", timestamp="2026-10-20T09:00:00")

    one_day = client.get("/api/events", params={"start": "2026-10-19"}).json()
    both = client.get("/api/events", params={"start": "2026-10-19", "end": "2026-10-20"}).json()

    assert len(one_day["events"]) == 1
    assert len(both["events"]) == 2
    assert client.get("/api/events", params={"start": "19/10/2026"}).status_code == 400
    assert (
        client.get("/api/events", params={"start": "2026-10-20", "end": "2026-10-19"}).status_code
        == 400
    )


def test_manual_category_assignment(client) -> None:
    event = _observe(client)
    work = _categories(client)["Work"]

    response = client.patch(f"/api/events/{event['id']}/category", json={"categoryId": work})
    assert response.status_code == 200
    assert response.json()["category_reasoning"] == "Manually recategorized by user"

    assert (
        client.patch(f"/api/events/{event['id']}/category", json={"categoryId": "nope"}).status_code
        == 400
    )
    assert client.patch("/api/events/missing/category", json={"categoryId": work}).status_code == 404
    assert client.get("/api/events/missing").status_code == 404


def test_categorize_endpoint_queues_known_events_only(client) -> None:
    event = _observe(client)

    assert client.post(f"/api/events/{event['id']}/categorize").status_code == 202
    assert client.post("/api/events/missing/categorize").status_code == 404


def test_bulk_recategorize(client) -> None:
    _observe(client, "s1", ownerName="Slack", title="general", url=None)
    _observe(client, "s2", ownerName="Slack", title="random", url=None, timestamp="2026-10-19T11:00:00")
    entertainment = _categories(client)["Entertainment"]

    response = client.post(
        "/api/recategorize",
        json={
            "identifier": "Slack",
            "itemType": "app",
            "start": "2026-10-19T00:00:00",
            "end": "2026-10-19T23:59:59",
            "categoryId": entertainment,
        },
    )

    assert response.json() == {"updated": 2}


def test_summary_totals(client) -> None:
    _observe(client, durationMs=60_000)

    summary = client.get("/api/summary", params={"date": "2026-10-19"}).json()

    assert summary["totals"]["uncategorized_seconds"] == 60.0
    assert summary["categories"][0]["name"] == "(uncategorized)"


def test_category_management(client) -> None:
    created = client.post(
        "/api/categories", json={"name": "Deep Work", "isProductive": True, "color": "#000"}
    )
    assert created.status_code == 201
    category_id = created.json()["id"]

    patched = client.patch(f"/api/categories/{category_id}", json={"name": "Focus"})
    assert patched.json()["name"] == "Focus"
    assert patched.json()["color"] == "#000"

    assert client.delete(f"/api/categories/{category_id}").json()["archived"] is True
    assert "Focus" not in _categories(client)
    assert client.delete("/api/categories/missing", params={"hard": True}).status_code == 404
    assert client.patch("/api/categories/missing", json={"name": "x"}).status_code == 404
    assert client.post("/api/categories", json={"name": "  "}).status_code == 400


def test_settings_and_goals(client) -> None:
    response = client.put("/api/settings", json={"ai_provider": "lmstudio", "ai_enabled": False})
    assert response.status_code == 200
    assert response.json()["settings"]["ai_enabled"] == "false"
    assert response.json()["settings"]["ai_provider"] == "lmstudio"
    assert client.put("/api/settings", json={"theme": "dark"}).status_code == 400

    client.put("/api/goals", json={"goals": ["Ship the beta", "Learn Rust"]})
    assert client.get("/api/goals").json() == {"goals": ["Ship the beta", "Learn Rust"]}


def test_ai_features_degrade_when_provider_is_down(client) -> None:
    work = _categories(client)["Work"]
    event = _observe(client)

    assert client.get("/api/providers/ollama/models").json() == {"models": []}
    tested = client.post("/api/providers/lmstudio/test").json()
    assert tested["success"] is False
    assert client.get("/api/providers/openai/models").status_code == 422
    assert client.post("/api/category-suggestions", json={"goals": "Write"}).json() == {
        "suggestions": None
    }
    assert client.post(f"/api/categories/{work}/emoji").json() == {"emoji": None}

    insights = client.get(f"/api/events/{event['id']}/insights").json()
    assert insights["summary"] is None
    assert insights["title"] == "org/repo"
    assert insights["title_informative"] is True


def test_bulk_recategorize_accepts_mixed_naive_and_utc_bounds(client) -> None:
    _observe(client, "s1", ownerName="Slack", title="general", url=None, timestamp="2026-10-19T12:00:00")
    entertainment = _categories(client)["Entertainment"]
    payload = {
        "identifier": "Slack",
        "itemType": "app",
        "start": "2026-10-19T00:00:00",
        "end": "2026-10-19T23:59:59Z",
        "categoryId": entertainment,
    }

    response = client.post("/api/recategorize", json=payload)
    assert response.status_code == 200, response.text

    payload.update(start="2026-10-20T00:00:00Z", end="2026-10-18T00:00:00")
    assert client.post("/api/recategorize", json=payload).status_code == 400


def test_boolean_settings_reject_non_boolean_values(client) -> None:
    assert client.put("/api/settings", json={"ai_enabled": 1}).status_code == 400
    assert client.put("/api/settings", json={"categorization_enabled": "yes"}).status_code == 400

    response = client.put("/api/settings", json={"ai_enabled": "TRUE"})
    assert response.status_code == 200
    assert client.get("/api/settings").json()["settings"]["ai_enabled"].lower() == "true"
