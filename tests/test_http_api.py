import pytest
from fastapi.testclient import TestClient

from memory_engine.api.http_api import create_app

from tests.conftest import FakeChromaClient, build_engine


@pytest.fixture(params=["local", "external"])
def client(request, config, clock):
    chroma = FakeChromaClient() if request.param == "external" else None
    app = create_app(build_engine(config, clock, chroma=chroma))
    with TestClient(app) as test_client:
        yield test_client


def add(client, text, **fields):
    body = {"text": text, "speaker": "user", "type": "note", "persona": "NIRVANA"}
    body.update(fields)
    response = client.post("/v1/memories", json=body)
    assert response.status_code == 201
    return response.json()["id"]


def test_health_and_info(client):
    assert client.get("/health").json() == {"status": "ok", "ready": True}

    info = client.get("/v1/memory/info").json()
    assert info["type"] in ("local", "external")
    assert info["embedding_type"] == "fallback"
    assert info["ready"] is True


def test_memory_crud(client):
    memory_id = add(client, "I love hiking", type="fact", importance=7, metadata={"tags": ["outdoors"]})

    memory = client.get(f"/v1/memories/{memory_id}").json()
    assert memory["text"] == "I love hiking"
    assert memory["metadata"]["importance"] == 7
    assert memory["metadata"]["tags"] == ["outdoors"]
    assert "embedding" not in memory

    assert client.delete(f"/v1/memories/{memory_id}").json() == {"deleted": True}
    assert client.get(f"/v1/memories/{memory_id}").status_code == 404
    assert client.delete(f"/v1/memories/{memory_id}").status_code == 404


def test_validation_errors(client):
    assert client.post("/v1/memories", json={"text": "", "speaker": "user"}).status_code == 422
    assert client.post("/v1/memories", json={"text": "x", "speaker": "user", "type": "gossip"}).status_code == 422
    assert client.get("/v1/memories/type/gossip").status_code == 422


def test_search(client):
    memory_id = add(client, "Meeting with the design team at 3pm")
    add(client, "Buy milk")

    response = client.post(
        "/v1/memories/search",
        json={"query": "Meeting with the design team at 3pm", "threshold": 0.9},
    )
    body = response.json()

    assert [r["memory"]["id"] for r in body["results"]] == [memory_id]
    assert body["results"][0]["score"] == pytest.approx(1.0)
    assert body["context"].startswith("[Memory 1] (relevance: 100.0%")

    boosted = client.post(
        "/v1/memories/search",
        json={"query": "Buy milk", "threshold": 0.9, "time_boost": True},
    ).json()
    assert [r["memory"]["text"] for r in boosted["results"]] == ["Buy milk"]


def test_listings_and_speakers(client):
    add(client, "Buy milk", type="task", speaker="Alice", metadata={"tags": ["home"]})
    add(client, "I love hiking", type="fact", speaker="bob")

    tasks = client.get("/v1/memories/type/task").json()["memories"]
    assert [m["text"] for m in tasks] == ["Buy milk"]

    assert client.get("/v1/speakers").json() == {"speakers": ["Alice", "bob"]}

    stats = client.get("/v1/speakers/alice/stats").json()
    assert stats["speaker"] == "Alice"
    assert stats["message_count"] == 1
    assert stats["average_importance"] == 5

    missing = client.get("/v1/speakers/Carol/stats")
    assert missing.status_code == 404
    assert missing.json() == {"error": "No memories found for speaker: Carol"}

    tagged = client.post("/v1/memories/tags", json={"tags": ["home", "work"]}).json()["memories"]
    assert [m["text"] for m in tagged] == ["Buy milk"]


def test_clear(client):
    add(client, "one")
    add(client, "two")

    assert client.delete("/v1/memories").json() == {"cleared": True}
    assert client.get("/v1/speakers").json() == {"speakers": []}


def test_search_filters_by_tags(client):
    tagged = add(client, "Pack for the trip", metadata={"tags": ["travel"]})
    add(client, "Pack for the trip")

    body = client.post(
        "/v1/memories/search",
        json={"query": "Pack for the trip", "threshold": 0.9, "tags": ["travel"]},
    ).json()
    assert [r["memory"]["id"] for r in body["results"]] == [tagged]
