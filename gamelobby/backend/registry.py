"""Registries that own identities and lobby sessions for the transport layer."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Protocol

from gamelobby.backend.config import LobbySettings
from gamelobby.backend.errors import IdentityExistsError, SessionNotFoundError, UnknownIdentityError
from gamelobby.backend.lobby import LobbySession
from gamelobby.backend.models import Identity, normalize_handle
from gamelobby.backend.security import generate_token, hash_token

logger = logging.getLogger(__name__)


@dataclass
class IdentityDirectory:
    """Account boundary: resolves handles and tokens to shared Identity objects."""

    server_salt: str

    def __post_init__(self) -> None:
        self._identities: dict[str, Identity] = {}
        self._token_hashes: dict[str, str] = {}

    def register(self, username: str) -> tuple[Identity, str]:
        key = normalize_handle(username)
        if not key:
            raise UnknownIdentityError("Username must not be empty")
        if key in self._identities:
            raise IdentityExistsError(f"{username} is already registered")
        identity = Identity(username=username.strip())
        token = generate_token()
        self._identities[key] = identity
        self._token_hashes[hash_token(token, self.server_salt)] = key
        return identity, token

    def get(self, username: str) -> Identity:
        identity = self._identities.get(normalize_handle(username))
        if identity is None:
            raise UnknownIdentityError(f"{username} is not registered")
        return identity

    def resolve_token(self, token: str | None) -> Identity | None:
        if not token:
            return None
        key = self._token_hashes.get(hash_token(token, self.server_salt))
        if key is None:
            return None
        return self._identities.get(key)

    def block(self, identity: Identity, username: str) -> None:
        target = self.get(username)
        identity.block(target)

    def unblock(self, identity: Identity, username: str) -> None:
        identity.unblock(username)


class SessionRegistry(Protocol):
    def create_session(
        self,
        owner: Identity,
        game_format: str,
        name: str | None = None,
        spectators_allowed: bool = False,
        password: str | None = None,
        game_private: bool = False,
    ) -> LobbySession:
        """Create a session owned by ``owner`` and keep it for listing."""

    def get_session(self, session_id: str) -> LobbySession:
        """Return the session or raise SessionNotFoundError."""

    def remove_session(self, session_id: str) -> None:
        """Forget a concluded or abandoned session."""

    def list_visible(self, viewer: Identity | None, is_authenticated: bool) -> list[dict[str, Any]]:
        """Return summaries of every session the viewer may see."""

    def sessions_for(self, identity: Identity) -> list[LobbySession]:
        """Return the sessions where identity holds a seat."""

    def leave(self, session_id: str, identity: Identity) -> bool:
        """Remove identity from a session, dropping it once empty."""

    def remove_participant(self, session_id: str, requester: Identity, username: str) -> bool:
        """Let the owner remove a participant, dropping the session once empty."""

    def has_session(self, session_id: str) -> bool:
        """Return whether the session is still kept."""


@dataclass
class InMemorySessionRegistry:
    server_salt: str
    max_players: int | None = 2

    def __post_init__(self) -> None:
        self._sessions: dict[str, LobbySession] = {}

    def create_session(
        self,
        owner: Identity,
        game_format: str,
        name: str | None = None,
        spectators_allowed: bool = False,
        password: str | None = None,
        game_private: bool = False,
    ) -> LobbySession:
        session = LobbySession(
            owner,
            game_format,
            name=name,
            spectators_allowed=spectators_allowed,
            password=password,
            game_private=game_private,
            max_players=self.max_players,
            server_salt=self.server_salt,
        )
        self._sessions[session.id] = session
        logger.info("%s created game %s (%s)", owner.username, session.id, game_format)
        return session

    def get_session(self, session_id: str) -> LobbySession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Game {session_id} not found")
        return session

    def remove_session(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.info("Removed game %s", session_id)

    def list_visible(self, viewer: Identity | None, is_authenticated: bool) -> list[dict[str, Any]]:
        return [
            session.get_summary(viewer, is_authenticated)
            for session in self._sessions.values()
            if session.is_visible_for(viewer)
        ]

    def sessions_for(self, identity: Identity) -> list[LobbySession]:
        return [session for session in self._sessions.values() if session.is_seated(identity)]

    def leave(self, session_id: str, identity: Identity) -> bool:
        session = self.get_session(session_id)
        left = session.leave(identity)
        if left:
            self._drop_if_abandoned(session)
        return left

    def remove_participant(self, session_id: str, requester: Identity, username: str) -> bool:
        session = self.get_session(session_id)
        removed = session.remove(requester, username)
        if removed:
            self._drop_if_abandoned(session)
        return removed

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _drop_if_abandoned(self, session: LobbySession) -> None:
        if session.is_empty() and not session.started:
            self.remove_session(session.id)


def create_registry(settings: LobbySettings) -> SessionRegistry:
    return InMemorySessionRegistry(server_salt=settings.server_salt, max_players=settings.max_players)
