"""Summary builders for lobby session snapshots."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from gamelobby.backend.models import Identity, ParticipantEntry

if TYPE_CHECKING:
    from gamelobby.backend.lobby import LobbySession


def card_code(card: Any) -> str | None:
    if not isinstance(card, dict):
        return None
    card_data = card.get("cardData")
    if not isinstance(card_data, dict):
        return None
    return card_data.get("code")


def build_session_summary(
    session: LobbySession,
    viewer: Identity | None = None,
    is_authenticated: bool = True,
) -> dict[str, Any]:
    """Return the client-facing view of a session.

    Faction and agenda codes are only revealed to an authenticated viewer of
    a started, public game. Otherwise they are redacted element by element so
    the agendas list keeps its length.
    """
    reveal = is_authenticated and session.started and not session.game_private
    return {
        "id": session.id,
        "name": session.name,
        "owner": session.owner.username,
        "gameFormat": session.game_format,
        "started": session.started,
        "gamePrivate": session.game_private,
        "allowSpectators": session.spectators_allowed,
        "needsPassword": session.needs_password,
        "full": session.is_full(),
        "createdAt": session.created_at,
        "players": {
            username: _player_summary(session, entry, reveal=reveal)
            for username, entry in session.players.items()
        },
        "spectators": {
            username: {"name": entry.username, "seat": entry.seat}
            for username, entry in session.spectators.items()
        },
    }


def _player_summary(session: LobbySession, entry: ParticipantEntry, reveal: bool) -> dict[str, Any]:
    agendas = entry.agendas
    if agendas is not None:
        agendas = [card_code(agenda) if reveal else None for agenda in agendas]
    return {
        "name": entry.username,
        "seat": entry.seat,
        "owner": session.is_owner(entry.identity),
        "faction": card_code(entry.faction) if reveal else None,
        "agendas": agendas,
    }
