"""Command-line client for participants and the evaluator."""

from __future__ import annotations

import argparse
import base64
import json
import logging
import sys
from pathlib import Path
from typing import Any
from urllib import error, request
from urllib.parse import urlencode

from sciencegame.backend.codec import decrypt_message, encrypt_message, load_private_key
from sciencegame.backend.config import configure_logging, load_settings
from sciencegame.backend.errors import CryptoError, EncodingError, GameError
from sciencegame.backend.security import solution_digest


logger = logging.getLogger(__name__)


class ServerError(Exception):
    def __init__(self, status: int, detail: str) -> None:
        super().__init__(f"HTTP {status}: {detail}")
        self.status = status
        self.detail = detail


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Science game client")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="run the API server")

    submit = subparsers.add_parser("submit", help="encrypt a solution for the evaluator and submit it")
    submit.add_argument("--server", default="http://127.0.0.1:8000")
    submit.add_argument("--session-id", required=True)
    submit.add_argument("--token", required=True)
    submit.add_argument("--sender", required=True)
    submit.add_argument("--content", required=True)

    evaluate = subparsers.add_parser("evaluate", help="decrypt pending submissions and report their digests")
    evaluate.add_argument("--server", default="http://127.0.0.1:8000")
    evaluate.add_argument("--session-id", required=True)
    evaluate.add_argument("--token", required=True)
    evaluate.add_argument("--private-key-file", type=Path, required=True)
    evaluate.add_argument("--all", action="store_true", help="drain the whole pending queue")
    return parser.parse_args(argv)


def request_json(method: str, url: str, payload: dict[str, Any] | None = None, timeout_s: float = 10.0) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    req = request.Request(url, data=data, method=method, headers={"Content-Type": "application/json"})
    try:
        with request.urlopen(req, timeout=timeout_s) as response:
            return json.loads(response.read().decode("utf-8"))
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace")
        try:
            detail = json.loads(body).get("detail", body)
        except ValueError:
            detail = body
        raise ServerError(exc.code, str(detail)) from exc


def session_url(server: str, session_id: str, suffix: str = "", token: str | None = None) -> str:
    url = f"{server.rstrip('/')}/api/sessions/{session_id}{suffix}"
    if token is not None:
        url = f"{url}?{urlencode({'token': token})}"
    return url


def submit_solution(server: str, session_id: str, token: str, sender: str, content: str) -> dict[str, Any]:
    state = request_json("GET", session_url(server, session_id, token=token))["state"]
    ciphertext = encrypt_message({"sender": sender, "content": content}, state["evaluatorPublicKey"])
    return request_json(
        "POST",
        session_url(server, session_id, "/submissions"),
        {"token": token, "sender": sender, "ciphertext": base64.b64encode(ciphertext).decode("ascii")},
    )["state"]


def evaluate_next(server: str, session_id: str, token: str, private_key: Any) -> dict[str, Any] | None:
    """Evaluate the oldest pending submission; ``None`` when the queue is empty.

    A submission that does not decrypt into a message is discarded so the
    rest of the queue can still be rewarded.
    """
    try:
        pending = request_json("GET", session_url(server, session_id, "/pending", token=token))
    except ServerError as exc:
        if exc.status == 404:
            return None
        raise
    try:
        message = decrypt_message(base64.b64decode(pending["ciphertext"]), private_key)
    except (CryptoError, EncodingError) as exc:
        print(f"Discarding unreadable submission: {exc}", file=sys.stderr)
        return request_json("DELETE", session_url(server, session_id, "/pending", token=token))["state"]
    logger.info("Evaluating submission from %s", message.sender)
    return request_json(
        "POST",
        session_url(server, session_id, "/evaluations"),
        {"token": token, "sender": message.sender, "content": solution_digest(message.content)},
    )["state"]


def serve() -> None:
    import uvicorn

    from sciencegame.backend.api import create_app
    from sciencegame.backend.store import create_store

    settings = load_settings()
    configure_logging(settings.log_level)
    store = create_store(
        database_url=settings.database_url,
        server_salt=settings.server_salt,
        action_timeout_ms=settings.action_timeout_ms,
    )
    uvicorn.run(create_app(store=store), host=settings.host, port=settings.port)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    if args.command == "serve":
        serve()
        return 0

    try:
        if args.command == "submit":
            state = submit_solution(args.server, args.session_id, args.token, args.sender, args.content)
            print(f"Submitted. Pending submissions: {state['pendingCount']}")
            return 0

        private_key = load_private_key(args.private_key_file.read_bytes())
        evaluated = 0
        while True:
            state = evaluate_next(args.server, args.session_id, args.token, private_key)
            if state is None:
                break
            evaluated += 1
            if not args.all:
                break
        print(f"Evaluated {evaluated} submission(s).")
        return 0
    except (ServerError, GameError, error.URLError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
