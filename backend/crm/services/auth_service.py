# Overview: User accounts and password checks for the identity oracle.

"""
Authentication Service

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, with upper, lower and digit
- Roles are limited to admin / user
"""

import bcrypt
import re

from ..extensions import db
from ..models import User, VALID_ROLES, ROLE_USER
from crm.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class UserError(ValueError):
    """Raised for invalid user data (duplicate username, bad role)."""
    pass


def validate_password_strength(password: str) -> None:
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str, *, rounds: int = 12) -> str:
    """Hash password using bcrypt. Password is validated for strength before hashing."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    *,
    role: str = ROLE_USER,
    full_name: str | None = None,
    rounds: int = 12,
) -> User:
    if role not in VALID_ROLES:
        raise UserError(f"Invalid role '{role}'. Must be one of: {', '.join(VALID_ROLES)}")

    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username or not email:
        raise UserError("username and email are required")

    if db.session.query(User).filter((User.username == username) | (User.email == email)).first():
        raise UserError("A user with this username or email already exists")

    user = User(
        username=username,
        email=email,
        full_name=full_name,
        password_hash=hash_password(password, rounds=rounds),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """Returns the active user matching the credentials, or None."""
    user = db.session.query(User).filter_by(username=(username or "").strip()).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password or "", user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def set_role(user_id: int, role: str) -> User:
    if role not in VALID_ROLES:
        raise UserError(f"Invalid role '{role}'. Must be one of: {', '.join(VALID_ROLES)}")
    user = db.session.get(User, user_id)
    if not user:
        raise UserError("User not found")
    user.role = role
    db.session.commit()
    return user
