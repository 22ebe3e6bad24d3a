"""In-memory coordinator for a single game while it is being assembled."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Mapping

from gamelobby.backend.errors import (
    AlreadySeatedError,
    AlreadyStartedError,
    SeatDataAlreadyAssignedError,
    UnknownParticipantError,
)
from gamelobby.backend.models import (
    AdmissionError,
    AdmissionResult,
    Identity,
    ParticipantEntry,
    Seat,
)
from gamelobby.backend.security import hash_password, verify_password
from gamelobby.backend.summary import build_session_summary

logger = logging.getLogger(__name__)

AdmissionCallback = Callable[[AdmissionResult], Any]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LobbySession:
    """Roster, admission policy and privacy state for one pending match.

    Operations on one instance are expected to be serialized by the caller;
    nothing here blocks or takes a lock.
    """

    def __init__(
        self,
        owner: Identity,
        game_format: str,
        *,
        name: str | None = None,
        spectators_allowed: bool = False,
        password: str | None = None,
        game_private: bool = False,
        max_players: int | None = 2,
        server_salt: str = "dev-salt",
    ) -> None:
        self.id = str(uuid.uuid4())
        self.owner = owner
        self.name = name or f"{owner.username}'s game"
        self.game_format = game_format
        self.players: dict[str, ParticipantEntry] = {}
        self.spectators: dict[str, ParticipantEntry] = {}
        self.started = False
        self.game_private = game_private
        self.max_players = max_players
        self.created_at = _utc_now_iso()
        self._spectators_allowed = spectators_allowed
        self._server_salt = server_salt
        self._password_hash = hash_password(password, server_salt) if password else None

    @property
    def spectators_allowed(self) -> bool:
        return self._spectators_allowed

    @property
    def needs_password(self) -> bool:
        return self._password_hash is not None

    def is_owner(self, identity: Identity | None) -> bool:
        return identity is not None and identity.username == self.owner.username

    def is_seated(self, identity: Identity) -> bool:
        return identity.username in self.players or identity.username in self.spectators

    def is_full(self) -> bool:
        return self.max_players is not None and len(self.players) >= self.max_players

    def is_empty(self) -> bool:
        return not self.players and not self.spectators

    def join(
        self,
        seat: Any,
        identity: Identity,
        password: str | None = "",
        callback: AdmissionCallback | None = None,
    ) -> AdmissionResult:
        reason = self._check_admission(identity, password, role=Seat.PLAYER)
        return self._complete_admission(seat, identity, Seat.PLAYER, reason, callback)

    def watch(
        self,
        seat: Any,
        identity: Identity,
        password: str | None = "",
        callback: AdmissionCallback | None = None,
    ) -> AdmissionResult:
        reason = self._check_admission(identity, password, role=Seat.SPECTATOR)
        return self._complete_admission(seat, identity, Seat.SPECTATOR, reason, callback)

    def add_player(self, seat: Any, identity: Identity) -> ParticipantEntry:
        """Seat a player directly, skipping password and block checks."""
        return self._seat(seat, identity, Seat.PLAYER)

    def add_spectator(self, seat: Any, identity: Identity) -> ParticipantEntry:
        return self._seat(seat, identity, Seat.SPECTATOR)

    def leave(self, identity: Identity) -> bool:
        username = identity.username
        entry = self.players.pop(username, None) or self.spectators.pop(username, None)
        if entry is None:
            return False
        logger.info("%s left game %s", username, self.id)
        if self.is_owner(identity) and not self.started and not self.is_empty():
            successor = next(iter(self.players.values()), None) or next(iter(self.spectators.values()))
            self.owner = successor.identity
            logger.info("Ownership of game %s passed to %s", self.id, self.owner.username)
        return True

    def remove(self, requester: Identity, username: str) -> bool:
        """Let the owner remove another participant before the game starts."""
        if not self.is_owner(requester) or self.started or username == self.owner.username:
            return False
        entry = self.players.pop(username, None) or self.spectators.pop(username, None)
        if entry is None:
            return False
        logger.info("%s removed %s from game %s", requester.username, username, self.id)
        return True

    def get_players_and_spectators(self) -> Mapping[str, ParticipantEntry]:
        return MappingProxyType({**self.players, **self.spectators})

    def is_visible_for(self, viewer: Identity | None) -> bool:
        if viewer is None:
            return True
        return not self._is_blocked(viewer)

    def get_summary(self, viewer: Identity | None = None, is_authenticated: bool = True) -> dict[str, Any]:
        return build_session_summary(self, viewer=viewer, is_authenticated=is_authenticated)

    def start(self) -> None:
        if self.started:
            raise AlreadyStartedError(f"Game {self.id} has already started")
        self.started = True
        logger.info("Game %s started with %d players", self.id, len(self.players))

    def set_private(self, game_private: bool) -> None:
        self.game_private = bool(game_private)

    def assign_seat_data(
        self,
        username: str,
        faction: dict[str, Any],
        agendas: list[dict[str, Any]],
    ) -> ParticipantEntry:
        entry = self.players.get(username)
        if entry is None:
            raise UnknownParticipantError(username)
        if entry.faction is not None or entry.agendas is not None:
            raise SeatDataAlreadyAssignedError(f"Seat data for {username} is already set")
        entry.faction = faction
        entry.agendas = list(agendas)
        return entry

    def _check_admission(self, identity: Identity, password: str | None, role: Seat) -> AdmissionError | None:
        if self.started:
            return AdmissionError.ALREADY_STARTED
        if self.is_seated(identity):
            return AdmissionError.ALREADY_SEATED
        if role is Seat.SPECTATOR and not self.spectators_allowed:
            return AdmissionError.SPECTATING_DISABLED
        if self._password_hash is not None and not verify_password(password, self._password_hash, self._server_salt):
            return AdmissionError.UNAUTHORIZED
        if self._is_blocked(identity):
            return AdmissionError.BLOCKED
        if role is Seat.PLAYER and self.is_full():
            return AdmissionError.SEAT_UNAVAILABLE
        return None

    def _is_blocked(self, identity: Identity) -> bool:
        # A self-block never counts against the owner or a seated player.
        if not self.is_owner(identity) and (self.owner.has_blocked(identity) or identity.has_blocked(self.owner)):
            return True
        return any(
            entry.identity.has_blocked(identity)
            for entry in self.players.values()
            if entry.username != identity.username
        )

    def _complete_admission(
        self,
        seat: Any,
        identity: Identity,
        role: Seat,
        reason: AdmissionError | None,
        callback: AdmissionCallback | None,
    ) -> AdmissionResult:
        if reason is None:
            result = AdmissionResult.accept(self._seat(seat, identity, role))
            logger.info("%s joined game %s as %s", identity.username, self.id, role.value)
        else:
            result = AdmissionResult.reject(reason)
            logger.info("Rejected %s from game %s: %s", identity.username, self.id, reason.value)
        if callback is not None:
            callback(result)
        return result

    def _seat(self, seat: Any, identity: Identity, role: Seat) -> ParticipantEntry:
        if self.is_seated(identity):
            raise AlreadySeatedError(identity.username)
        entry = ParticipantEntry(identity=identity, seat=seat, role=role)
        roster = self.spectators if role is Seat.SPECTATOR else self.players
        roster[identity.username] = entry
        return entry
