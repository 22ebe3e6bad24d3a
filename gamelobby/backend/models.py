"""Domain models for identities, roster entries and admission outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def normalize_handle(username: str) -> str:
    return username.strip().lower()


@dataclass(eq=False)
class Identity:
    """A registered account and the handles it has blocked.

    Blocking is directed: ``a.block(b)`` says nothing about whether ``b``
    blocks ``a``. Handles are stored lower-cased so the set holds no
    duplicates regardless of how a name was typed.
    """

    username: str
    blocked: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.blocked = {normalize_handle(name) for name in self.blocked}

    def block(self, other: Identity | str) -> None:
        self.blocked.add(normalize_handle(_handle_of(other)))

    def unblock(self, other: Identity | str) -> None:
        self.blocked.discard(normalize_handle(_handle_of(other)))

    def has_blocked(self, other: Identity | str) -> bool:
        return normalize_handle(_handle_of(other)) in self.blocked

    def is_blocked_by(self, other: Identity) -> bool:
        return other.has_blocked(self)


def _handle_of(other: Identity | str) -> str:
    if isinstance(other, Identity):
        return other.username
    return other


class Seat(str, Enum):
    PLAYER = "player"
    SPECTATOR = "spectator"


@dataclass(eq=False)
class ParticipantEntry:
    identity: Identity
    seat: Any
    role: Seat = Seat.PLAYER
    # Assigned by the rules engine once the match begins.
    faction: dict[str, Any] | None = None
    agendas: list[dict[str, Any]] | None = None

    @property
    def username(self) -> str:
        return self.identity.username

    @property
    def is_spectator(self) -> bool:
        return self.role is Seat.SPECTATOR


class AdmissionError(str, Enum):
    ALREADY_STARTED = "already_started"
    ALREADY_SEATED = "already_seated"
    UNAUTHORIZED = "unauthorized"
    BLOCKED = "blocked"
    SPECTATING_DISABLED = "spectating_disabled"
    SEAT_UNAVAILABLE = "seat_unavailable"


@dataclass(frozen=True)
class AdmissionResult:
    accepted: bool
    reason: AdmissionError | None = None
    entry: ParticipantEntry | None = None

    @classmethod
    def accept(cls, entry: ParticipantEntry) -> AdmissionResult:
        return cls(accepted=True, entry=entry)

    @classmethod
    def reject(cls, reason: AdmissionError) -> AdmissionResult:
        return cls(accepted=False, reason=reason)
