"""
Capability resolution and security event logging.

MULTI-TENANT: Security events carry company_id and store_id so they can be
filtered per tenant.

DESIGN PRINCIPLES:
- Fail closed: unknown roles and inactive users get no capabilities
- Log denials only
"""

from __future__ import annotations

from flask import has_request_context, request

from ..errors import PermissionDeniedError
from ..extensions import db
from ..models import SecurityEvent, User
from ..permissions import ROLE_CAPABILITIES, Capabilities, Scope
from ..time_utils import utcnow


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    reason: str | None = None,
    company_id: int | None = None,
    store_id: int | None = None,
    action: str | None = None,
) -> SecurityEvent:
    """
    Append a security event and commit it.

    Request path, method, IP and user agent are taken from the current
    request when there is one.

    event_type examples: PERMISSION_DENIED, CROSS_TENANT_ACCESS,
    LOGIN_FAILED, LOGOUT.
    """
    in_request = has_request_context()
    event = SecurityEvent(
        user_id=user_id,
        company_id=company_id,
        store_id=store_id,
        event_type=event_type,
        resource=request.path if in_request else None,
        action=action or (request.method if in_request else None),
        success=success,
        reason=reason,
        ip_address=request.remote_addr if in_request else None,
        user_agent=request.headers.get("User-Agent") if in_request else None,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.commit()
    return event


def resolve_capabilities(
    user: User,
    company_id: int | None = None,
    store_id: int | None = None,
) -> Capabilities:
    """
    Map a user (and the tenant context of their session) to Capabilities.

    company_id/store_id default to the user's own; sessions pass the values
    captured at login.
    """
    company_id = company_id if company_id is not None else user.company_id
    store_id = store_id if store_id is not None else user.store_id

    entry = ROLE_CAPABILITIES.get(user.role)
    if entry is None or not user.is_active:
        return Capabilities(
            user_id=user.id,
            role=user.role,
            scope=Scope.STORE,
            company_id=company_id,
            store_id=store_id,
        )

    scope, can_sell, can_cancel, can_inventory, can_report, own_only = entry
    return Capabilities(
        user_id=user.id,
        role=user.role,
        scope=scope,
        company_id=None if scope == Scope.PLATFORM else company_id,
        store_id=store_id if scope == Scope.STORE else None,
        can_process_sales=can_sell,
        can_cancel_sales=can_cancel,
        can_manage_inventory=can_inventory,
        can_view_reports=can_report,
        own_sales_only=own_only,
    )


def require_capability(caps: Capabilities, flag: str) -> None:
    """Raise PermissionDeniedError (and log it) unless caps grants ``flag``."""
    if caps.allows(flag):
        return
    log_security_event(
        user_id=caps.user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        reason=f"Missing capability: {flag}",
        company_id=caps.company_id,
        store_id=caps.store_id,
    )
    raise PermissionDeniedError(
        "Permission denied",
        {"required_capability": flag, "role": caps.role},
    )
