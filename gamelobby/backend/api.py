"""FastAPI endpoints for identities, game listing, admission and websocket sync."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from .config import load_settings
from .errors import IdentityExistsError, SessionNotFoundError, UnknownIdentityError
from .lobby import LobbySession
from .models import AdmissionResult, Identity
from .registry import IdentityDirectory, SessionRegistry, create_registry

logger = logging.getLogger(__name__)


class RegisterRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)


class RegisterResponse(BaseModel):
    username: str
    token: str


class BlockRequest(BaseModel):
    token: str = Field(min_length=1)
    username: str = Field(min_length=1, max_length=64)


class BlockListResponse(BaseModel):
    blocked: list[str]


class CreateGameRequest(BaseModel):
    token: str = Field(min_length=1)
    name: str | None = Field(default=None, max_length=200)
    game_format: str = Field(default="joust", min_length=1, max_length=64)
    allow_spectators: bool = False
    password: str | None = None
    game_private: bool = False
    seat_as_player: bool = True


class SeatRequest(BaseModel):
    token: str = Field(min_length=1)
    seat: int = 1
    password: str | None = ""


class TokenEnvelope(BaseModel):
    token: str = Field(min_length=1)


class RemoveRequest(BaseModel):
    token: str = Field(min_length=1)
    username: str = Field(min_length=1, max_length=64)


class PrivacyRequest(BaseModel):
    token: str = Field(min_length=1)
    game_private: bool


class SummaryResponse(BaseModel):
    summary: dict[str, Any]


class GameListResponse(BaseModel):
    games: list[dict[str, Any]]


@dataclass(eq=False)
class _Subscriber:
    websocket: WebSocket
    viewer: Identity | None


class GameWebSocketHub:
    """Pushes each subscriber a summary projected for that subscriber."""

    def __init__(self) -> None:
        self._subscribers: dict[str, set[_Subscriber]] = defaultdict(set)

    async def connect(self, game_id: str, websocket: WebSocket, viewer: Identity | None) -> _Subscriber:
        await websocket.accept()
        subscriber = _Subscriber(websocket=websocket, viewer=viewer)
        self._subscribers[game_id].add(subscriber)
        return subscriber

    def disconnect(self, game_id: str, subscriber: _Subscriber) -> None:
        subscribers = self._subscribers.get(game_id)
        if subscribers is None:
            return
        subscribers.discard(subscriber)
        if not subscribers:
            self._subscribers.pop(game_id, None)

    async def send_summary(self, subscriber: _Subscriber, session: LobbySession) -> None:
        summary = session.get_summary(subscriber.viewer, subscriber.viewer is not None)
        await subscriber.websocket.send_json({"type": "game.summary", "summary": summary})

    async def broadcast_summary(self, session: LobbySession) -> None:
        stale: list[_Subscriber] = []
        for subscriber in list(self._subscribers.get(session.id, set())):
            if not session.is_visible_for(subscriber.viewer):
                await self._close(subscriber)
                stale.append(subscriber)
                continue
            try:
                await self.send_summary(subscriber, session)
            except RuntimeError:
                stale.append(subscriber)
        for subscriber in stale:
            self.disconnect(game_id=session.id, subscriber=subscriber)

    async def close_game(self, game_id: str) -> None:
        for subscriber in list(self._subscribers.pop(game_id, set())):
            await self._close(subscriber)

    async def _close(self, subscriber: _Subscriber) -> None:
        try:
            await subscriber.websocket.close(code=1008)
        except RuntimeError:
            pass


def create_app(
    registry: SessionRegistry | None = None,
    directory: IdentityDirectory | None = None,
) -> FastAPI:
    settings = load_settings()
    app = FastAPI(title="Game Lobby API", version="0.1.0")
    session_registry = registry if registry is not None else create_registry(settings)
    identity_directory = directory if directory is not None else IdentityDirectory(server_salt=settings.server_salt)
    websocket_hub = GameWebSocketHub()
    app.state.websocket_hub = websocket_hub

    def get_registry() -> SessionRegistry:
        return session_registry

    def get_directory() -> IdentityDirectory:
        return identity_directory

    def require_identity(token: str) -> Identity:
        identity = identity_directory.resolve_token(token)
        if identity is None:
            raise HTTPException(status_code=403, detail="Token invalid")
        return identity

    def require_session(local_registry: SessionRegistry, game_id: str) -> LobbySession:
        try:
            return local_registry.get_session(game_id)
        except SessionNotFoundError:
            raise HTTPException(status_code=404, detail="Game not found") from None

    async def publish(local_registry: SessionRegistry, session: LobbySession) -> None:
        if local_registry.has_session(session.id):
            await websocket_hub.broadcast_summary(session)
        else:
            await websocket_hub.close_game(session.id)

    def admission_response(session: LobbySession, identity: Identity, result: AdmissionResult) -> SummaryResponse:
        if not result.accepted:
            raise HTTPException(status_code=409, detail={"reason": result.reason.value})
        return SummaryResponse(summary=session.get_summary(identity, True))

    @app.post("/api/users", response_model=RegisterResponse)
    async def register_user(
        payload: RegisterRequest,
        local_directory: IdentityDirectory = Depends(get_directory),
    ) -> RegisterResponse:
        try:
            identity, token = local_directory.register(payload.username)
        except IdentityExistsError:
            raise HTTPException(status_code=409, detail="Username taken") from None
        except UnknownIdentityError:
            raise HTTPException(status_code=422, detail="Username invalid") from None
        logger.info("Registered %s", identity.username)
        return RegisterResponse(username=identity.username, token=token)

    @app.post("/api/users/me/blocks", response_model=BlockListResponse)
    async def block_user(
        payload: BlockRequest,
        local_directory: IdentityDirectory = Depends(get_directory),
    ) -> BlockListResponse:
        identity = require_identity(payload.token)
        try:
            local_directory.block(identity, payload.username)
        except UnknownIdentityError:
            raise HTTPException(status_code=404, detail="User not found") from None
        return BlockListResponse(blocked=sorted(identity.blocked))

    @app.delete("/api/users/me/blocks/{username}", response_model=BlockListResponse)
    async def unblock_user(
        username: str,
        token: str = Query(min_length=1),
        local_directory: IdentityDirectory = Depends(get_directory),
    ) -> BlockListResponse:
        identity = require_identity(token)
        local_directory.unblock(identity, username)
        return BlockListResponse(blocked=sorted(identity.blocked))

    @app.post("/api/games", response_model=SummaryResponse)
    async def create_game(
        payload: CreateGameRequest,
        local_registry: SessionRegistry = Depends(get_registry),
    ) -> SummaryResponse:
        owner = require_identity(payload.token)
        session = local_registry.create_session(
            owner,
            payload.game_format,
            name=payload.name,
            spectators_allowed=payload.allow_spectators,
            password=payload.password,
            game_private=payload.game_private,
        )
        if payload.seat_as_player:
            session.add_player(1, owner)
        return SummaryResponse(summary=session.get_summary(owner, True))

    @app.get("/api/games", response_model=GameListResponse)
    async def list_games(
        token: str | None = Query(default=None),
        local_registry: SessionRegistry = Depends(get_registry),
    ) -> GameListResponse:
        viewer = identity_directory.resolve_token(token)
        return GameListResponse(games=local_registry.list_visible(viewer, viewer is not None))

    @app.get("/api/games/{game_id}", response_model=SummaryResponse)
    async def get_game(
        game_id: str,
        token: str | None = Query(default=None),
        local_registry: SessionRegistry = Depends(get_registry),
    ) -> SummaryResponse:
        viewer = identity_directory.resolve_token(token)
        session = require_session(local_registry, game_id)
        if not session.is_visible_for(viewer):
            raise HTTPException(status_code=404, detail="Game not found")
        return SummaryResponse(summary=session.get_summary(viewer, viewer is not None))

    @app.post("/api/games/{game_id}/join", response_model=SummaryResponse)
    async def join_game(
        game_id: str,
        payload: SeatRequest,
        local_registry: SessionRegistry = Depends(get_registry),
    ) -> SummaryResponse:
        identity = require_identity(payload.token)
        session = require_session(local_registry, game_id)
        result = session.join(payload.seat, identity, payload.password)
        response = admission_response(session, identity, result)
        await websocket_hub.broadcast_summary(session)
        return response

    @app.post("/api/games/{game_id}/watch", response_model=SummaryResponse)
    async def watch_game(
        game_id: str,
        payload: SeatRequest,
        local_registry: SessionRegistry = Depends(get_registry),
    ) -> SummaryResponse:
        identity = require_identity(payload.token)
        session = require_session(local_registry, game_id)
        result = session.watch(payload.seat, identity, payload.password)
        response = admission_response(session, identity, result)
        await websocket_hub.broadcast_summary(session)
        return response

    @app.post("/api/games/{game_id}/leave", response_model=SummaryResponse)
    async def leave_game(
        game_id: str,
        payload: TokenEnvelope,
        local_registry: SessionRegistry = Depends(get_registry),
    ) -> SummaryResponse:
        identity = require_identity(payload.token)
        session = require_session(local_registry, game_id)
        if not local_registry.leave(game_id, identity):
            raise HTTPException(status_code=409, detail="Not seated in this game")
        await publish(local_registry, session)
        return SummaryResponse(summary=session.get_summary(identity, True))

    @app.post("/api/games/{game_id}/remove", response_model=SummaryResponse)
    async def remove_participant(
        game_id: str,
        payload: RemoveRequest,
        local_registry: SessionRegistry = Depends(get_registry),
    ) -> SummaryResponse:
        identity = require_identity(payload.token)
        session = require_session(local_registry, game_id)
        if not session.is_owner(identity):
            raise HTTPException(status_code=403, detail="Only the owner can remove participants")
        if not local_registry.remove_participant(game_id, identity, payload.username):
            raise HTTPException(status_code=409, detail="Participant cannot be removed")
        await publish(local_registry, session)
        return SummaryResponse(summary=session.get_summary(identity, True))

    @app.post("/api/games/{game_id}/private", response_model=SummaryResponse)
    async def set_game_private(
        game_id: str,
        payload: PrivacyRequest,
        local_registry: SessionRegistry = Depends(get_registry),
    ) -> SummaryResponse:
        identity = require_identity(payload.token)
        session = require_session(local_registry, game_id)
        if not session.is_owner(identity):
            raise HTTPException(status_code=403, detail="Only the owner can change privacy")
        session.set_private(payload.game_private)
        await websocket_hub.broadcast_summary(session)
        return SummaryResponse(summary=session.get_summary(identity, True))

    @app.websocket("/ws/games/{game_id}")
    async def game_ws(
        websocket: WebSocket,
        game_id: str,
        local_registry: SessionRegistry = Depends(get_registry),
    ) -> None:
        viewer = identity_directory.resolve_token(websocket.query_params.get("token"))
        try:
            session = local_registry.get_session(game_id)
        except SessionNotFoundError:
            await websocket.close(code=1008)
            return
        if not session.is_visible_for(viewer):
            await websocket.close(code=1008)
            return

        subscriber = await websocket_hub.connect(game_id=game_id, websocket=websocket, viewer=viewer)
        logger.debug("Subscriber connected to game %s", game_id)
        await websocket_hub.send_summary(subscriber, session)

        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            websocket_hub.disconnect(game_id=game_id, subscriber=subscriber)

    return app


app = create_app()
