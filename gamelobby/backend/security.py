"""Security helpers for identity tokens and join passwords."""

from __future__ import annotations

import hashlib
import hmac
import secrets


TOKEN_BYTES = 24
PASSWORD_ITERATIONS = 200_000


def generate_token() -> str:
    """Generate a URL-safe token for identity access."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(token: str, server_salt: str) -> str:
    """Create deterministic token hash via sha256(token + server_salt)."""
    payload = f"{token}{server_salt}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def verify_token(raw_token: str, expected_hash: str, server_salt: str) -> bool:
    """Compare raw token against a stored hash."""
    return hmac.compare_digest(hash_token(raw_token, server_salt), expected_hash)


def hash_password(password: str, server_salt: str) -> str:
    """Derive a join-password hash via PBKDF2-HMAC-SHA256 keyed by server_salt."""
    derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), server_salt.encode("utf-8"), PASSWORD_ITERATIONS)
    return derived.hex()


def verify_password(password: str | None, expected_hash: str, server_salt: str) -> bool:
    """Check a join password. An empty password never matches."""
    if not password:
        return False
    return hmac.compare_digest(hash_password(password, server_salt), expected_hash)
