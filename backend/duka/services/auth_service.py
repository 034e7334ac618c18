# Overview: Service-layer operations for users and authentication.

"""
User and Authentication Service

Passwords are bcrypt-hashed (BCRYPT_ROUNDS, default 12). Roles are flat: admin or
cashier. Bearer sessions are handled separately in session_service.
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User
from ..models.auth import ROLE_ADMIN, VALID_ROLES
from duka.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class AuthError(Exception):
    """Raised for user management errors (duplicates, unknown users, bad roles)."""
    pass


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one letter
    - At least one digit
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Za-z]', password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Hash password using bcrypt (cost factor BCRYPT_ROUNDS, default 12) after strength validation."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt verification. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def _normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise AuthError("A valid email is required")
    return email


def create_user(email: str, password: str, full_name: str, role: str = "cashier") -> User:
    """
    Create new user with bcrypt password hashing.

    Raises PasswordValidationError for weak passwords and AuthError for a
    duplicate email, blank name or unknown role.
    """
    email = _normalize_email(email)
    full_name = (full_name or "").strip()
    if not full_name:
        raise AuthError("Full name is required")
    if role not in VALID_ROLES:
        raise AuthError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")

    if db.session.query(User).filter_by(email=email).first():
        raise AuthError(f"Email '{email}' already exists")

    user = User(
        email=email,
        full_name=full_name,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """Return the active user for these credentials, or None."""
    try:
        email = _normalize_email(email)
    except AuthError:
        return None
    user = db.session.query(User).filter_by(email=email).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password or "", user.password_hash):
        return None
    user.last_login_at = utcnow()
    db.session.commit()
    return user


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.created_at.asc(), User.id.asc()).all()


def update_user(
    *,
    user_id: int,
    actor: User,
    role: str | None = None,
    is_active: bool | None = None,
    full_name: str | None = None,
    password: str | None = None,
) -> User:
    """
    Admin edit of another account. An admin may not demote or deactivate
    themselves, so the system always keeps at least the acting admin.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise AuthError("User not found")

    if role is not None:
        if role not in VALID_ROLES:
            raise AuthError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")
        if user.id == actor.id and role != ROLE_ADMIN:
            raise AuthError("You cannot remove your own admin role")
        user.role = role

    if is_active is not None:
        if user.id == actor.id and not is_active:
            raise AuthError("You cannot deactivate your own account")
        user.is_active = bool(is_active)

    if full_name is not None:
        full_name = full_name.strip()
        if not full_name:
            raise AuthError("Full name is required")
        user.full_name = full_name

    if password is not None:
        user.password_hash = hash_password(password)

    db.session.commit()
    return user
