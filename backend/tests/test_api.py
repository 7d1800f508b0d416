from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from conftest import make_item
from listen_together import main
from listen_together.services.media import MediaSearchError


@pytest.fixture()
def client():
    return TestClient(main.app)


@pytest.fixture()
def lobby():
    room, _ = main.registry.join("api-lobby", "api-c1")
    room.enqueue("api-c1", make_item(1))
    yield room
    main.registry.leave("api-lobby", "api-c1")


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_missing_room(client):
    response = client.get("/api/rooms/does-not-exist")
    assert response.status_code == 404


def test_room_summary(client, lobby):
    data = client.get("/api/rooms/api-lobby").json()
    assert data["room_id"] == "api-lobby"
    assert data["participant_count"] == 1
    assert data["is_playing"] is True
    assert data["current_item"]["item"]["external_id"] == "vid1"


def test_stats(client, lobby):
    stats = client.get("/api/stats").json()
    assert stats["total_rooms"] >= 1
    assert stats["active_rooms"] >= 1


def test_search_requires_query(client):
    assert client.get("/api/search").status_code == 400


def test_search(client):
    with patch.object(main.media, "search", AsyncMock(return_value=[make_item(3)])) as search:
        response = client.get("/api/search", params={"q": "jazz", "max_results": 2})
    assert response.status_code == 200
    assert response.json()[0]["external_id"] == "vid3"
    search.assert_awaited_once_with("jazz", 2)


def test_search_provider_failure(client):
    with patch.object(main.media, "search", AsyncMock(side_effect=MediaSearchError("quota"))):
        response = client.get("/api/search", params={"q": "jazz"})
    assert response.status_code == 502
    assert response.json()["detail"] == "quota"
