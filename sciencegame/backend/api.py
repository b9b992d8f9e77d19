"""FastAPI endpoints for session creation, actions and websocket ledger sync."""

from __future__ import annotations

import base64
import os
from collections import defaultdict
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .codec import Message
from .errors import DecodeError, GameError, UnknownParticipant
from .events import PlayerJoinPayload, decode_ciphertext
from .models import PlayerJoin
from .security import generate_token
from .state import SessionInit, public_view
from .store import EVALUATOR, InMemorySessionStore, SessionStore


class CreateSessionResponse(BaseModel):
    session_id: str
    evaluator_token: str
    player_token: str


class SessionStateResponse(BaseModel):
    state: dict[str, Any]


class PendingSubmissionResponse(BaseModel):
    ciphertext: str


class SubmissionEnvelope(BaseModel):
    token: str = Field(min_length=1)
    sender: str = Field(min_length=1)
    ciphertext: str = Field(min_length=1)


class EvaluationEnvelope(BaseModel):
    token: str = Field(min_length=1)
    sender: str = Field(min_length=1)
    content: str


class ParticipantsEnvelope(BaseModel):
    token: str = Field(min_length=1)
    new_players: list[PlayerJoinPayload]


class SessionWebSocketHub:
    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections[session_id].add(websocket)

    def disconnect(self, session_id: str, websocket: WebSocket) -> None:
        connections = self._connections.get(session_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            self._connections.pop(session_id, None)

    async def send_state(self, websocket: WebSocket, state: dict[str, Any]) -> None:
        await websocket.send_json({"type": "state.full", "state": public_view(state)})

    async def broadcast_state(self, session_id: str, state: dict[str, Any]) -> None:
        stale_connections: list[WebSocket] = []
        for websocket in list(self._connections.get(session_id, set())):
            try:
                await self.send_state(websocket, state)
            except RuntimeError:
                stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(session_id=session_id, websocket=websocket)


def _default_store() -> SessionStore:
    server_salt = os.getenv("SCIENCEGAME_SERVER_SALT", "dev-salt")
    return InMemorySessionStore(server_salt=server_salt)


def _error_status(exc: GameError) -> int:
    if isinstance(exc, UnknownParticipant):
        return 404
    if isinstance(exc, DecodeError):
        return 422
    return 400


def create_app(store: SessionStore | None = None) -> FastAPI:
    app = FastAPI(title="Science Game API", version="0.1.0")
    session_store = store if store is not None else _default_store()
    websocket_hub = SessionWebSocketHub()
    app.state.websocket_hub = websocket_hub

    async def publish_state(session_id: str, state: dict[str, Any]) -> None:
        await websocket_hub.broadcast_state(session_id=session_id, state=state)

    app.state.publish_state = publish_state

    @app.exception_handler(GameError)
    async def game_error_handler(request: Request, exc: GameError) -> JSONResponse:
        return JSONResponse(status_code=_error_status(exc), content={"detail": str(exc)})

    def get_store() -> SessionStore:
        return session_store

    @app.post("/api/sessions", response_model=CreateSessionResponse)
    def create_session(
        payload: SessionInit,
        local_store: SessionStore = Depends(get_store),
    ) -> CreateSessionResponse:
        created = local_store.create_session(
            init=payload,
            evaluator_token=generate_token(),
            player_token=generate_token(),
        )
        return CreateSessionResponse(
            session_id=created.session_id,
            evaluator_token=created.evaluator_token,
            player_token=created.player_token,
        )

    @app.get("/api/sessions/{session_id}", response_model=SessionStateResponse)
    def get_session(
        session_id: str,
        token: str = Query(min_length=1),
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        record = local_store.get_session_state(session_id=session_id, raw_token=token)
        if record is None:
            raise HTTPException(status_code=404, detail="Session not found or token invalid")
        return SessionStateResponse(state=public_view(record.state))

    @app.post("/api/sessions/{session_id}/submissions", response_model=SessionStateResponse)
    async def post_submission(
        session_id: str,
        payload: SubmissionEnvelope,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        state = local_store.submit(
            session_id=session_id,
            raw_token=payload.token,
            sender=payload.sender,
            ciphertext=decode_ciphertext(payload.ciphertext),
        )
        if state is None:
            raise HTTPException(status_code=403, detail="Submission not allowed")
        await publish_state(session_id=session_id, state=state)
        return SessionStateResponse(state=public_view(state))

    @app.get("/api/sessions/{session_id}/pending", response_model=PendingSubmissionResponse)
    def get_pending(
        session_id: str,
        token: str = Query(min_length=1),
        local_store: SessionStore = Depends(get_store),
    ) -> PendingSubmissionResponse:
        access = local_store.get_session_access(session_id=session_id, raw_token=token)
        if access is None or access.role != EVALUATOR:
            raise HTTPException(status_code=403, detail="Only the evaluator may read submissions")
        ciphertext = local_store.pending_head(session_id=session_id, raw_token=token)
        if ciphertext is None:
            raise HTTPException(status_code=404, detail="No pending submission")
        return PendingSubmissionResponse(ciphertext=base64.b64encode(ciphertext).decode("ascii"))

    @app.delete("/api/sessions/{session_id}/pending", response_model=SessionStateResponse)
    async def discard_pending(
        session_id: str,
        token: str = Query(min_length=1),
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        state = local_store.discard_pending(session_id=session_id, raw_token=token)
        if state is None:
            raise HTTPException(status_code=403, detail="Only the evaluator may discard submissions")
        await publish_state(session_id=session_id, state=state)
        return SessionStateResponse(state=public_view(state))

    @app.post("/api/sessions/{session_id}/evaluations", response_model=SessionStateResponse)
    async def post_evaluation(
        session_id: str,
        payload: EvaluationEnvelope,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        state = local_store.evaluate(
            session_id=session_id,
            raw_token=payload.token,
            message=Message(sender=payload.sender, content=payload.content),
        )
        if state is None:
            raise HTTPException(status_code=403, detail="Evaluation not allowed")
        await publish_state(session_id=session_id, state=state)
        return SessionStateResponse(state=public_view(state))

    @app.post("/api/sessions/{session_id}/participants", response_model=SessionStateResponse)
    async def post_participants(
        session_id: str,
        payload: ParticipantsEnvelope,
        local_store: SessionStore = Depends(get_store),
    ) -> SessionStateResponse:
        state = local_store.sync(
            session_id=session_id,
            raw_token=payload.token,
            new_players=[PlayerJoin(identity=player.identity, balance=player.balance) for player in payload.new_players],
        )
        if state is None:
            raise HTTPException(status_code=403, detail="Join not allowed")
        await publish_state(session_id=session_id, state=state)
        return SessionStateResponse(state=public_view(state))

    @app.websocket("/ws/sessions/{session_id}")
    async def session_ws(
        websocket: WebSocket,
        session_id: str,
        local_store: SessionStore = Depends(get_store),
    ) -> None:
        token = websocket.query_params.get("token")
        if token is None or token == "":
            await websocket.close(code=1008)
            return
        access = local_store.get_session_access(session_id=session_id, raw_token=token)
        if access is None:
            await websocket.close(code=1008)
            return

        await websocket_hub.connect(session_id=session_id, websocket=websocket)
        await websocket_hub.send_state(websocket=websocket, state=access.state)

        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            websocket_hub.disconnect(session_id=session_id, websocket=websocket)

    return app


app = create_app()
