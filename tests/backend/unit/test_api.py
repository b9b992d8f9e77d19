import base64

import pytest

fastapi = pytest.importorskip("fastapi")
pytest.importorskip("httpx")
from fastapi.testclient import TestClient

from sciencegame.backend.api import create_app
from sciencegame.backend.codec import Message, decrypt_message, encrypt_message
from sciencegame.backend.security import solution_digest
from sciencegame.backend.store import InMemorySessionStore


@pytest.fixture
def session_payload(public_key_pem) -> dict:
    return {
        "reward_amount": 1,
        "evaluator_public_key": public_key_pem,
        "initial_result_ledger": {"931693190773671174": "player7"},
        "players": [{"identity": "player1", "balance": 0}],
    }


def _encrypted(public_key_pem: str, sender: str, content: str) -> str:
    ciphertext = encrypt_message(Message(sender=sender, content=content), public_key_pem)
    return base64.b64encode(ciphertext).decode("ascii")


def test_post_sessions_returns_id_and_tokens(session_payload) -> None:
    client = TestClient(create_app(store=InMemorySessionStore(server_salt="test-salt")))

    response = client.post("/api/sessions", json=session_payload)

    assert response.status_code == 200
    data = response.json()
    assert data["session_id"]
    assert data["evaluator_token"]
    assert data["player_token"]
    assert data["evaluator_token"] != data["player_token"]


def test_post_sessions_rejects_bad_key_and_bad_payload(session_payload) -> None:
    client = TestClient(create_app(store=InMemorySessionStore(server_salt="test-salt")))

    bad_key = client.post("/api/sessions", json={**session_payload, "evaluator_public_key": "nope"})
    bad_reward = client.post("/api/sessions", json={**session_payload, "reward_amount": -5})

    assert bad_key.status_code == 400
    assert bad_reward.status_code == 422


def test_get_session_returns_public_state_for_valid_token(session_payload) -> None:
    client = TestClient(create_app(store=InMemorySessionStore(server_salt="test-salt")))
    created = client.post("/api/sessions", json=session_payload).json()

    response = client.get(f"/api/sessions/{created['session_id']}", params={"token": created["player_token"]})
    invalid = client.get(f"/api/sessions/{created['session_id']}", params={"token": "invalid"})

    assert response.status_code == 200
    state = response.json()["state"]
    assert state["id"] == created["session_id"]
    assert state["stage"] == "Waiting"
    assert state["pendingCount"] == 0
    assert "pending" not in state
    assert state["participants"][0]["localResults"] == {"931693190773671174": "player7"}
    assert invalid.status_code == 404


def test_submit_pending_evaluate_flow(session_payload, public_key_pem, private_key) -> None:
    client = TestClient(create_app(store=InMemorySessionStore(server_salt="test-salt")))
    created = client.post("/api/sessions", json=session_payload).json()
    session_id = created["session_id"]

    submitted = client.post(
        f"/api/sessions/{session_id}/submissions",
        json={
            "token": created["player_token"],
            "sender": "player1",
            "ciphertext": _encrypted(public_key_pem, "player1", "Solution10"),
        },
    )
    forbidden_pending = client.get(f"/api/sessions/{session_id}/pending", params={"token": created["player_token"]})
    pending = client.get(f"/api/sessions/{session_id}/pending", params={"token": created["evaluator_token"]})

    assert submitted.status_code == 200
    assert submitted.json()["state"]["pendingCount"] == 1
    assert forbidden_pending.status_code == 403
    assert pending.status_code == 200

    message = decrypt_message(base64.b64decode(pending.json()["ciphertext"]), private_key)
    forbidden = client.post(
        f"/api/sessions/{session_id}/evaluations",
        json={"token": created["player_token"], "sender": message.sender, "content": "x"},
    )
    evaluated = client.post(
        f"/api/sessions/{session_id}/evaluations",
        json={
            "token": created["evaluator_token"],
            "sender": message.sender,
            "content": solution_digest(message.content),
        },
    )

    assert forbidden.status_code == 403
    assert evaluated.status_code == 200
    state = evaluated.json()["state"]
    assert state["resultLedger"][solution_digest("Solution10")] == "player1"
    assert state["participants"][0]["balance"] == 1
    assert state["pendingCount"] == 0
    empty = client.get(f"/api/sessions/{session_id}/pending", params={"token": created["evaluator_token"]})
    assert empty.status_code == 404


def test_evaluator_discards_unreadable_head_and_keeps_the_rest(session_payload, public_key_pem) -> None:
    client = TestClient(create_app(store=InMemorySessionStore(server_salt="test-salt")))
    created = client.post("/api/sessions", json=session_payload).json()
    session_id = created["session_id"]
    submissions = f"/api/sessions/{session_id}/submissions"
    client.post(submissions, json={"token": created["player_token"], "sender": "player1", "ciphertext": "AAEC"})
    client.post(
        submissions,
        json={
            "token": created["player_token"],
            "sender": "player1",
            "ciphertext": _encrypted(public_key_pem, "player1", "Solution10"),
        },
    )

    forbidden = client.delete(f"/api/sessions/{session_id}/pending", params={"token": created["player_token"]})
    discarded = client.delete(f"/api/sessions/{session_id}/pending", params={"token": created["evaluator_token"]})
    pending = client.get(f"/api/sessions/{session_id}/pending", params={"token": created["evaluator_token"]})

    assert forbidden.status_code == 403
    assert discarded.status_code == 200
    assert discarded.json()["state"]["pendingCount"] == 1
    assert discarded.json()["state"]["participants"][0]["balance"] == 0
    assert base64.b64decode(pending.json()["ciphertext"]) != b"\x00\x01\x02"


def test_submission_errors_map_to_status_codes(session_payload) -> None:
    client = TestClient(create_app(store=InMemorySessionStore(server_salt="test-salt")))
    created = client.post("/api/sessions", json=session_payload).json()
    url = f"/api/sessions/{created['session_id']}/submissions"

    unknown = client.post(url, json={"token": created["player_token"], "sender": "ghost", "ciphertext": "AAEC"})
    malformed = client.post(url, json={"token": created["player_token"], "sender": "player1", "ciphertext": "%%"})
    bad_token = client.post(url, json={"token": "bad", "sender": "player1", "ciphertext": "AAEC"})

    assert unknown.status_code == 404
    assert malformed.status_code == 422
    assert bad_token.status_code == 403


def test_participants_join_with_ledger_snapshot(session_payload) -> None:
    client = TestClient(create_app(store=InMemorySessionStore(server_salt="test-salt")))
    created = client.post("/api/sessions", json=session_payload).json()
    url = f"/api/sessions/{created['session_id']}/participants"

    forbidden = client.post(url, json={"token": created["player_token"], "new_players": [{"identity": "player2"}]})
    joined = client.post(url, json={"token": created["evaluator_token"], "new_players": [{"identity": "player2"}]})

    assert forbidden.status_code == 403
    assert joined.status_code == 200
    participants = joined.json()["state"]["participants"]
    assert [p["identity"] for p in participants] == ["player1", "player2"]
    assert participants[1]["localResults"] == {"931693190773671174": "player7"}


def test_websocket_sends_initial_state_after_connect(session_payload) -> None:
    client = TestClient(create_app(store=InMemorySessionStore(server_salt="test-salt")))
    created = client.post("/api/sessions", json=session_payload).json()
    session_id = created["session_id"]

    with client.websocket_connect(f"/ws/sessions/{session_id}?token={created['player_token']}") as websocket:
        message = websocket.receive_json()

    assert message["type"] == "state.full"
    assert message["state"]["id"] == session_id
    assert "pending" not in message["state"]


def test_websocket_rejects_invalid_token(session_payload) -> None:
    client = TestClient(create_app(store=InMemorySessionStore(server_salt="test-salt")))
    created = client.post("/api/sessions", json=session_payload).json()

    with pytest.raises(Exception):
        with client.websocket_connect(f"/ws/sessions/{created['session_id']}?token=invalid"):
            pass


def test_websocket_broadcasts_ledger_to_all_clients(session_payload) -> None:
    app = create_app(store=InMemorySessionStore(server_salt="test-salt"))

    with TestClient(app) as client:
        created = client.post("/api/sessions", json=session_payload).json()
        session_id = created["session_id"]
        evaluator_token = created["evaluator_token"]
        player_token = created["player_token"]

        with client.websocket_connect(f"/ws/sessions/{session_id}?token={evaluator_token}") as ws_evaluator:
            with client.websocket_connect(f"/ws/sessions/{session_id}?token={player_token}") as ws_player:
                ws_evaluator.receive_json()
                ws_player.receive_json()

                client.post(
                    f"/api/sessions/{session_id}/evaluations",
                    json={"token": evaluator_token, "sender": "player1", "content": "k1"},
                )

                evaluator_message = ws_evaluator.receive_json()
                player_message = ws_player.receive_json()

    for message in (evaluator_message, player_message):
        assert message["type"] == "state.full"
        assert message["state"]["resultLedger"]["k1"] == "player1"
        assert message["state"]["participants"][0]["localResults"]["k1"] == "player1"
