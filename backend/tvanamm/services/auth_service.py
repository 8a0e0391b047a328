# Overview: Portal account creation and password authentication (bcrypt).

"""
Authentication service

Passwords are hashed with bcrypt (cost from BCRYPT_ROUNDS, 12 by default)
and must pass validate_password_strength. Session tokens are handled
separately in session_service.py.

Franchise partners receive a TVANAMM id from the identifier service at
creation; other roles have none.
"""

import re

import bcrypt
from flask import current_app, has_app_context

from ..extensions import db
from ..models import User
from ..permissions import Role
from ..time_utils import utcnow
from ..validation import ValidationError
from .identifier_service import next_tvanamm_id
from .loyalty_service import get_or_create_account


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_password_strength(password: str) -> None:
    """
    Minimum 8 characters with an uppercase letter, a lowercase letter,
    a digit and a special character.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")
    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def _rounds() -> int:
    if has_app_context():
        return current_app.config.get("BCRYPT_ROUNDS", 12)
    return 12


def hash_password(password: str) -> str:
    validate_password_strength(password)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=_rounds()))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_user(email: str, password: str, full_name: str, role: str = Role.CUSTOMER.value,
                phone: str | None = None) -> User:
    """
    Create a portal account.

    Raises:
        ValidationError: bad email, unknown role, or email already registered.
        PasswordValidationError: weak password.
    """
    email = (email or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError("A valid email is required")
    if not (full_name or "").strip():
        raise ValidationError("full_name is required")
    try:
        role_enum = Role.parse(role)
    except ValueError as exc:
        raise ValidationError(str(exc))

    if db.session.query(User).filter_by(email=email).first():
        raise ValidationError("Email already registered")

    password_hash = hash_password(password)
    tvanamm_id = next_tvanamm_id() if role_enum is Role.FRANCHISE else None

    user = User(
        email=email,
        full_name=full_name.strip(),
        phone=(phone or "").strip() or None,
        role=role_enum.value,
        tvanamm_id=tvanamm_id,
        password_hash=password_hash,
    )
    db.session.add(user)
    db.session.flush()
    get_or_create_account(user.id, commit=False)
    db.session.commit()

    if has_app_context():
        current_app.logger.info("User %s created (role=%s)", email, role_enum.value)
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Returns the User when the credentials are valid and the account active,
    None otherwise. Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.email == (email or "").strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
