# Overview: Bearer session tokens and the per-request identity/role lookup.

"""
Session Token Management Service

- Cryptographically secure random tokens (32 bytes), stored as SHA-256
- Absolute expiry (SESSION_TTL_HOURS), revocable on logout
- The session records WHO the caller is, never their role. current_actor()
  reads the user row on every request, so a demotion or deactivation takes
  effect on the very next call.
"""

import secrets
import hashlib
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, User
from crm.time_utils import utcnow
from .authorization import Actor


DEFAULT_SESSION_TTL = timedelta(hours=12)


class Unauthenticated(Exception):
    """No valid session for the request."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(user_id: int, *, ttl: timedelta = DEFAULT_SESSION_TTL) -> tuple[SessionToken, str]:
    """
    Returns (session_record, plaintext_token).
    Client receives plaintext_token, database stores only the hash.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + ttl,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def current_actor(token: str | None) -> Actor:
    """
    Resolve a bearer token to the caller's identity and CURRENT role.

    Raises:
        Unauthenticated: token missing, unknown, expired, revoked, or the
            user is deactivated
    """
    if not token:
        raise Unauthenticated()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        raise Unauthenticated("Invalid or expired token")

    if session.expires_at < utcnow():
        raise Unauthenticated("Invalid or expired token")

    user = db.session.get(User, session.user_id, populate_existing=True)
    if not user or not user.is_active:
        raise Unauthenticated("Invalid or expired token")

    return Actor(user_id=user.id, role=user.role)


def revoke_session(token: str) -> bool:
    """Returns True if a live session was revoked, False if none matched."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return False

    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
