"""
Session Token Management

Tokens are 32 random bytes handed to the client once; only their SHA-256
hash is stored. A session captures the user's company and store at login,
and that tenant context stays fixed for the session's lifetime.

Sessions end on expiry (SESSION_TTL_HOURS), logout, or when the user or
their company is deactivated.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import Company, SessionToken, User
from ..permissions import Capabilities
from ..time_utils import utcnow
from .permission_service import resolve_capabilities


@dataclass
class SessionContext:
    user: User
    session: SessionToken
    company_id: int | None
    store_id: int | None
    capabilities: Capabilities


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user: User, user_agent: str | None = None, ip_address: str | None = None) -> tuple[SessionToken, str]:
    """
    Create a session for ``user``.

    Returns (session_record, plaintext_token); the plaintext is never stored.
    """
    now = utcnow()
    token = generate_token()
    session = SessionToken(
        user_id=user.id,
        company_id=user.company_id,
        store_id=user.store_id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + timedelta(hours=current_app.config["SESSION_TTL_HOURS"]),
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def _revoke(session: SessionToken) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Return the SessionContext for a valid token, or None.

    Sessions of deactivated users or companies are revoked on sight.
    """
    session = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if session is None:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    user = session.user
    if user is None or not user.is_active:
        _revoke(session)
        return None

    if session.company_id is not None:
        company = db.session.get(Company, session.company_id)
        if company is None or not company.is_active:
            _revoke(session)
            return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(
        user=user,
        session=session,
        company_id=session.company_id,
        store_id=session.store_id,
        capabilities=resolve_capabilities(user, session.company_id, session.store_id),
    )


def revoke_session(token: str) -> bool:
    session = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if session is None:
        return False
    _revoke(session)
    return True
