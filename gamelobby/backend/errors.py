"""Exceptions raised when callers break the lobby contract."""

from __future__ import annotations


class LobbyError(Exception):
    """Base class for lobby contract violations."""


class AlreadySeatedError(LobbyError):
    def __init__(self, username: str) -> None:
        super().__init__(f"{username} is already seated in this game")
        self.username = username


class AlreadyStartedError(LobbyError):
    pass


class UnknownParticipantError(LobbyError):
    def __init__(self, username: str) -> None:
        super().__init__(f"{username} is not seated as a player")
        self.username = username


class SeatDataAlreadyAssignedError(LobbyError):
    pass


class SessionNotFoundError(LobbyError):
    pass


class UnknownIdentityError(LobbyError):
    pass


class IdentityExistsError(LobbyError):
    pass
