"""
Password hashing, user creation and authentication.

Passwords are hashed with bcrypt (BCRYPT_ROUNDS, 12 by default) and must
be at least 8 characters with upper case, lower case, a digit and a special
character.
"""

from __future__ import annotations

import re

import bcrypt
from flask import current_app

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import Company, Store, User
from ..models.auth import ROLES
from ..permissions import ROLE_CAPABILITIES, Scope
from ..time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")
    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    *,
    role: str = "employee",
    company_id: int | None = None,
    store_id: int | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    """
    Create a user whose tenant assignment matches the role's scope:
    platform roles have no company, company roles need one, store roles
    need a store of that company.
    """
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}", {"field": "role"})

    scope = ROLE_CAPABILITIES[role][0]
    if scope == Scope.PLATFORM:
        company_id, store_id = None, None
    else:
        if company_id is None or db.session.get(Company, company_id) is None:
            raise ValidationError("A valid company is required for this role", {"field": "company_id"})
        if scope == Scope.STORE:
            store = db.session.get(Store, store_id) if store_id is not None else None
            if store is None or store.company_id != company_id:
                raise ValidationError("A store of the company is required for this role", {"field": "store_id"})

    if db.session.query(User.id).filter(db.or_(User.username == username, User.email == email)).first():
        raise ConflictError("Username or email already exists", {"username": username})

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        company_id=company_id,
        store_id=store_id,
        first_name=first_name,
        last_name=last_name,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """
    Check credentials (username or email). Returns the user or None.

    Users of inactive companies cannot log in.
    """
    user = (
        db.session.query(User)
        .filter(
            db.or_(User.username == identifier, User.email == identifier),
            User.is_active.is_(True),
        )
        .first()
    )
    if user is None or not verify_password(password, user.password_hash):
        return None

    if user.company_id is not None:
        company = db.session.get(Company, user.company_id)
        if company is None or not company.is_active:
            return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
