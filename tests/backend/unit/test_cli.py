import base64

import pytest

from sciencegame.backend.codec import Message, decrypt_message, encrypt_message
from sciencegame.backend.security import solution_digest
from sciencegame.client import cli


def test_session_url_builds_query_string() -> None:
    assert cli.session_url("http://h:1/", "s1") == "http://h:1/api/sessions/s1"
    assert cli.session_url("http://h:1", "s1", "/pending", token="a b") == "http://h:1/api/sessions/s1/pending?token=a+b"


def test_submit_solution_encrypts_with_session_key(monkeypatch, public_key_pem, private_key) -> None:
    calls: list[tuple[str, str, dict | None]] = []

    def fake_request_json(method, url, payload=None, timeout_s=10.0):
        calls.append((method, url, payload))
        if method == "GET":
            return {"state": {"evaluatorPublicKey": public_key_pem}}
        return {"state": {"pendingCount": 1}}

    monkeypatch.setattr(cli, "request_json", fake_request_json)

    state = cli.submit_solution("http://server", "s1", "tok", "player1", "Solution10")

    assert state == {"pendingCount": 1}
    method, url, payload = calls[1]
    assert method == "POST"
    assert url.endswith("/api/sessions/s1/submissions")
    message = decrypt_message(base64.b64decode(payload["ciphertext"]), private_key)
    assert message == Message(sender="player1", content="Solution10")


def test_evaluate_next_posts_digest_of_decrypted_content(monkeypatch, public_key_pem, private_key) -> None:
    ciphertext = encrypt_message(Message(sender="player1", content="Solution10"), public_key_pem)
    posted: list[dict] = []

    def fake_request_json(method, url, payload=None, timeout_s=10.0):
        if method == "GET":
            return {"ciphertext": base64.b64encode(ciphertext).decode("ascii")}
        posted.append(payload)
        return {"state": {"pendingCount": 0}}

    monkeypatch.setattr(cli, "request_json", fake_request_json)

    state = cli.evaluate_next("http://server", "s1", "eval", private_key)

    assert state == {"pendingCount": 0}
    assert posted == [{"token": "eval", "sender": "player1", "content": solution_digest("Solution10")}]


def test_evaluate_next_returns_none_when_nothing_pending(monkeypatch, private_key) -> None:
    def fake_request_json(method, url, payload=None, timeout_s=10.0):
        raise cli.ServerError(404, "No pending submission")

    monkeypatch.setattr(cli, "request_json", fake_request_json)

    assert cli.evaluate_next("http://server", "s1", "eval", private_key) is None


def test_evaluate_next_reraises_other_server_errors(monkeypatch, private_key) -> None:
    def fake_request_json(method, url, payload=None, timeout_s=10.0):
        raise cli.ServerError(403, "Only the evaluator may read submissions")

    monkeypatch.setattr(cli, "request_json", fake_request_json)

    with pytest.raises(cli.ServerError):
        cli.evaluate_next("http://server", "s1", "player", private_key)


def test_main_evaluate_drains_queue_with_all_flag(monkeypatch, tmp_path, private_key_pem, capsys) -> None:
    key_file = tmp_path / "evaluator.pem"
    key_file.write_bytes(private_key_pem)
    results = iter([{"pendingCount": 1}, {"pendingCount": 0}, None])
    monkeypatch.setattr(cli, "evaluate_next", lambda server, session_id, token, private_key: next(results))

    exit_code = cli.main(
        ["evaluate", "--session-id", "s1", "--token", "eval", "--private-key-file", str(key_file), "--all"]
    )

    assert exit_code == 0
    assert "Evaluated 2 submission(s)." in capsys.readouterr().out


def test_main_reports_server_errors(monkeypatch, capsys) -> None:
    def failing_submit(*args):
        raise cli.ServerError(404, "Participant not found: 'ghost'")

    monkeypatch.setattr(cli, "submit_solution", failing_submit)

    exit_code = cli.main(
        ["submit", "--session-id", "s1", "--token", "tok", "--sender", "ghost", "--content", "x"]
    )

    assert exit_code == 1
    assert "Participant not found" in capsys.readouterr().err


def test_evaluate_next_discards_unreadable_submission(monkeypatch, private_key, capsys) -> None:
    calls: list[tuple[str, str]] = []

    def fake_request_json(method, url, payload=None, timeout_s=10.0):
        calls.append((method, url))
        if method == "GET":
            return {"ciphertext": base64.b64encode(b"not a ciphertext").decode("ascii")}
        return {"state": {"pendingCount": 1}}

    monkeypatch.setattr(cli, "request_json", fake_request_json)

    state = cli.evaluate_next("http://server", "s1", "eval", private_key)

    assert state == {"pendingCount": 1}
    assert calls[-1] == ("DELETE", "http://server/api/sessions/s1/pending?token=eval")
    assert all(method != "POST" for method, _ in calls)
    assert "Discarding unreadable submission" in capsys.readouterr().err


def test_main_submit_reports_unencodable_content(monkeypatch, public_key_pem, capsys) -> None:
    monkeypatch.setattr(
        cli,
        "request_json",
        lambda method, url, payload=None, timeout_s=10.0: {"state": {"evaluatorPublicKey": public_key_pem}},
    )

    exit_code = cli.main(
        ["submit", "--session-id", "s1", "--token", "tok", "--sender", "player1", "--content", "bad \udcff arg"]
    )

    assert exit_code == 1
    assert "Cannot serialize message" in capsys.readouterr().err
