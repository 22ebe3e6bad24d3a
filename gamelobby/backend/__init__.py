"""Backend package for the game lobby."""

from .config import LobbySettings, load_settings
from .lobby import LobbySession
from .models import AdmissionError, AdmissionResult, Identity, ParticipantEntry, Seat
from .registry import IdentityDirectory, InMemorySessionRegistry, SessionRegistry, create_registry
from .security import generate_token, hash_token, verify_token
from .summary import build_session_summary

__all__ = [
    "AdmissionError",
    "AdmissionResult",
    "build_session_summary",
    "create_registry",
    "generate_token",
    "hash_token",
    "Identity",
    "IdentityDirectory",
    "InMemorySessionRegistry",
    "LobbySession",
    "LobbySettings",
    "load_settings",
    "ParticipantEntry",
    "Seat",
    "SessionRegistry",
    "verify_token",
]
