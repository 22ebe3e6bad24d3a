"""Configuration helpers for the lobby backend."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class LobbySettings:
    server_salt: str
    host: str
    port: int
    max_players: int | None
    log_level: str


def load_settings() -> LobbySettings:
    port_raw = os.getenv("GAMELOBBY_PORT", "8000")
    max_players_raw = os.getenv("GAMELOBBY_MAX_PLAYERS", "2")
    return LobbySettings(
        server_salt=os.getenv("GAMELOBBY_SERVER_SALT", "dev-salt"),
        host=os.getenv("GAMELOBBY_HOST", "127.0.0.1"),
        port=int(port_raw),
        max_players=int(max_players_raw) if max_players_raw else None,
        log_level=os.getenv("GAMELOBBY_LOG_LEVEL", "INFO").upper(),
    )
