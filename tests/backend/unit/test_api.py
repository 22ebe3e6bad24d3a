import pytest

fastapi = pytest.importorskip("fastapi")
pytest.importorskip("httpx")
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from gamelobby.backend.api import create_app
from gamelobby.backend.registry import IdentityDirectory, InMemorySessionRegistry


def _client() -> tuple[TestClient, InMemorySessionRegistry]:
    registry = InMemorySessionRegistry(server_salt="test-salt")
    directory = IdentityDirectory(server_salt="test-salt")
    return TestClient(create_app(registry=registry, directory=directory)), registry


def _register(client: TestClient, username: str) -> str:
    return client.post("/api/users", json={"username": username}).json()["token"]


def test_register_returns_token_and_rejects_duplicates() -> None:
    client, _ = _client()

    first = client.post("/api/users", json={"username": "alice"})
    second = client.post("/api/users", json={"username": "Alice"})

    assert first.status_code == 200
    assert first.json()["username"] == "alice"
    assert first.json()["token"]
    assert second.status_code == 409


def test_create_game_seats_owner_and_returns_summary() -> None:
    client, _ = _client()
    token = _register(client, "owner")

    response = client.post("/api/games", json={"token": token, "name": "Winter", "allow_spectators": True})

    assert response.status_code == 200
    summary = response.json()["summary"]
    assert summary["owner"] == "owner"
    assert summary["name"] == "Winter"
    assert summary["allowSpectators"] is True
    assert list(summary["players"]) == ["owner"]


def test_create_game_rejects_invalid_token() -> None:
    client, _ = _client()

    response = client.post("/api/games", json={"token": "invalid"})

    assert response.status_code == 403


def test_join_reports_rejection_reason() -> None:
    client, _ = _client()
    owner_token = _register(client, "owner")
    player_token = _register(client, "player")
    game_id = client.post("/api/games", json={"token": owner_token, "password": "winter"}).json()["summary"]["id"]

    wrong = client.post(f"/api/games/{game_id}/join", json={"token": player_token, "seat": 2, "password": "x"})
    right = client.post(f"/api/games/{game_id}/join", json={"token": player_token, "seat": 2, "password": "winter"})

    assert wrong.status_code == 409
    assert wrong.json()["detail"] == {"reason": "unauthorized"}
    assert right.status_code == 200
    assert set(right.json()["summary"]["players"]) == {"owner", "player"}


def test_blocked_user_cannot_join_or_see_game() -> None:
    client, _ = _client()
    owner_token = _register(client, "owner")
    blocked_token = _register(client, "harasser")
    game_id = client.post("/api/games", json={"token": owner_token, "allow_spectators": True}).json()["summary"]["id"]

    client.post("/api/users/me/blocks", json={"token": owner_token, "username": "harasser"})
    join = client.post(f"/api/games/{game_id}/join", json={"token": blocked_token, "seat": 2})
    watch = client.post(f"/api/games/{game_id}/watch", json={"token": blocked_token, "seat": 3})
    listing = client.get("/api/games", params={"token": blocked_token})
    detail = client.get(f"/api/games/{game_id}", params={"token": blocked_token})

    assert join.json()["detail"] == {"reason": "blocked"}
    assert watch.json()["detail"] == {"reason": "blocked"}
    assert listing.json()["games"] == []
    assert detail.status_code == 404


def test_unblock_restores_visibility() -> None:
    client, _ = _client()
    owner_token = _register(client, "owner")
    viewer_token = _register(client, "viewer")
    client.post("/api/games", json={"token": owner_token})
    client.post("/api/users/me/blocks", json={"token": viewer_token, "username": "owner"})

    hidden = client.get("/api/games", params={"token": viewer_token}).json()["games"]
    unblocked = client.delete("/api/users/me/blocks/owner", params={"token": viewer_token})
    shown = client.get("/api/games", params={"token": viewer_token}).json()["games"]

    assert hidden == []
    assert unblocked.json()["blocked"] == []
    assert len(shown) == 1


def test_get_game_redacts_seat_data_for_anonymous_viewer() -> None:
    client, registry = _client()
    owner_token = _register(client, "owner")
    game_id = client.post("/api/games", json={"token": owner_token}).json()["summary"]["id"]
    session = registry.get_session(game_id)
    session.start()
    session.assign_seat_data("owner", {"cardData": {"code": "stark"}}, [{"cardData": {"code": "fealty"}}])

    anonymous = client.get(f"/api/games/{game_id}").json()["summary"]["players"]["owner"]
    authenticated = client.get(f"/api/games/{game_id}", params={"token": owner_token}).json()["summary"]["players"][
        "owner"
    ]

    assert anonymous["faction"] is None
    assert anonymous["agendas"] == [None]
    assert authenticated["faction"] == "stark"
    assert authenticated["agendas"] == ["fealty"]


def test_set_private_is_owner_only() -> None:
    client, _ = _client()
    owner_token = _register(client, "owner")
    other_token = _register(client, "other")
    game_id = client.post("/api/games", json={"token": owner_token}).json()["summary"]["id"]

    forbidden = client.post(f"/api/games/{game_id}/private", json={"token": other_token, "game_private": True})
    allowed = client.post(f"/api/games/{game_id}/private", json={"token": owner_token, "game_private": True})

    assert forbidden.status_code == 403
    assert allowed.status_code == 200
    assert allowed.json()["summary"]["gamePrivate"] is True


def test_leave_and_unknown_game() -> None:
    client, registry = _client()
    owner_token = _register(client, "owner")
    player_token = _register(client, "player")
    game_id = client.post("/api/games", json={"token": owner_token}).json()["summary"]["id"]
    client.post(f"/api/games/{game_id}/join", json={"token": player_token, "seat": 2})

    left = client.post(f"/api/games/{game_id}/leave", json={"token": player_token})
    again = client.post(f"/api/games/{game_id}/leave", json={"token": player_token})
    missing = client.get("/api/games/does-not-exist")

    assert left.status_code == 200
    assert list(left.json()["summary"]["players"]) == ["owner"]
    assert again.status_code == 409
    assert missing.status_code == 404


def test_websocket_sends_summary_after_connect() -> None:
    client, _ = _client()
    owner_token = _register(client, "owner")
    game_id = client.post("/api/games", json={"token": owner_token}).json()["summary"]["id"]

    with client.websocket_connect(f"/ws/games/{game_id}?token={owner_token}") as websocket:
        message = websocket.receive_json()

    assert message["type"] == "game.summary"
    assert message["summary"]["id"] == game_id


def test_websocket_rejects_unknown_game() -> None:
    client, _ = _client()

    with pytest.raises(Exception):
        with client.websocket_connect("/ws/games/unknown"):
            pass


def test_websocket_broadcasts_summary_on_join() -> None:
    registry = InMemorySessionRegistry(server_salt="test-salt")
    app = create_app(registry=registry, directory=IdentityDirectory(server_salt="test-salt"))

    with TestClient(app) as client:
        owner_token = _register(client, "owner")
        player_token = _register(client, "player")
        game_id = client.post("/api/games", json={"token": owner_token}).json()["summary"]["id"]

        with client.websocket_connect(f"/ws/games/{game_id}?token={owner_token}") as ws_owner:
            with client.websocket_connect(f"/ws/games/{game_id}") as ws_anonymous:
                ws_owner.receive_json()
                ws_anonymous.receive_json()

                client.post(f"/api/games/{game_id}/join", json={"token": player_token, "seat": 2})

                owner_message = ws_owner.receive_json()
                anonymous_message = ws_anonymous.receive_json()

    assert set(owner_message["summary"]["players"]) == {"owner", "player"}
    assert set(anonymous_message["summary"]["players"]) == {"owner", "player"}


def test_remove_participant_is_owner_only_and_drops_empty_game() -> None:
    client, registry = _client()
    owner_token = _register(client, "owner")
    player_token = _register(client, "player")
    game_id = client.post("/api/games", json={"token": owner_token, "seat_as_player": False}).json()["summary"]["id"]
    client.post(f"/api/games/{game_id}/join", json={"token": player_token, "seat": 2})

    forbidden = client.post(f"/api/games/{game_id}/remove", json={"token": player_token, "username": "owner"})
    missing = client.post(f"/api/games/{game_id}/remove", json={"token": owner_token, "username": "nobody"})
    removed = client.post(f"/api/games/{game_id}/remove", json={"token": owner_token, "username": "player"})

    assert forbidden.status_code == 403
    assert missing.status_code == 409
    assert removed.status_code == 200
    assert removed.json()["summary"]["players"] == {}
    assert registry.has_session(game_id) is False


def test_websocket_closes_subscriber_blocked_after_connect() -> None:
    registry = InMemorySessionRegistry(server_salt="test-salt")
    app = create_app(registry=registry, directory=IdentityDirectory(server_salt="test-salt"))

    with TestClient(app) as client:
        owner_token = _register(client, "owner")
        viewer_token = _register(client, "foo")
        player_token = _register(client, "player")
        game_id = client.post("/api/games", json={"token": owner_token}).json()["summary"]["id"]

        with client.websocket_connect(f"/ws/games/{game_id}?token={viewer_token}") as ws_viewer:
            ws_viewer.receive_json()
            client.post("/api/users/me/blocks", json={"token": owner_token, "username": "foo"})

            client.post(f"/api/games/{game_id}/join", json={"token": player_token, "seat": 2})

            with pytest.raises(WebSocketDisconnect) as closed:
                ws_viewer.receive_json()

    assert closed.value.code == 1008


def test_websocket_closes_subscribers_when_game_is_dropped() -> None:
    registry = InMemorySessionRegistry(server_salt="test-salt")
    app = create_app(registry=registry, directory=IdentityDirectory(server_salt="test-salt"))

    with TestClient(app) as client:
        owner_token = _register(client, "owner")
        game_id = client.post("/api/games", json={"token": owner_token}).json()["summary"]["id"]

        with client.websocket_connect(f"/ws/games/{game_id}") as ws_anonymous:
            ws_anonymous.receive_json()

            client.post(f"/api/games/{game_id}/leave", json={"token": owner_token})

            with pytest.raises(WebSocketDisconnect):
                ws_anonymous.receive_json()

    assert registry.has_session(game_id) is False
