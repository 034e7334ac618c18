# Overview: Bearer session tokens: issue, validate, revoke.

"""
Session Token Management

- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- 24-hour absolute timeout, 2-hour idle timeout
- Revocable on logout
"""

import hashlib
import secrets
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, User
from duka.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user: User) -> str:
    """Create a session and return the plaintext token (never stored)."""
    token = generate_token()
    now = utcnow()
    db.session.add(
        SessionToken(
            user_id=user.id,
            token_hash=hash_token(token),
            created_at=now,
            last_used_at=now,
            expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
            is_revoked=False,
        )
    )
    db.session.commit()
    return token


def validate_session(token: str) -> User | None:
    """Return the session's user if the token is live, sliding the idle window."""
    if not token:
        return None
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return None

    now = utcnow()
    if now >= session.expires_at or now - session.last_used_at >= SESSION_IDLE_TIMEOUT:
        session.is_revoked = True
        session.revoked_at = now
        db.session.commit()
        return None

    user = session.user
    if not user or not user.is_active:
        return None

    session.last_used_at = now
    db.session.commit()
    return user


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
