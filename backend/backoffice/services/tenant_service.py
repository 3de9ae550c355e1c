"""
Tenant/Store resolution and scoping helpers.

SECURITY INVARIANTS:
1. Store-scoped callers only ever operate on their own store; a store id in
   the request is ignored for them.
2. Company-scoped callers may name any store of their own company.
3. A store of another company is reported as "not found" and the attempt is
   logged as a CROSS_TENANT_ACCESS security event.
4. Sales can only be written against active stores.
"""

from __future__ import annotations

from ..errors import ScopeError, StoreInactiveError, StoreNotFoundError, ValidationError
from ..extensions import db
from ..models import Store
from ..permissions import Capabilities, Scope
from .permission_service import log_security_event


def require_store_in_company(store_id: int, company_id: int, caps: Capabilities | None = None) -> Store:
    """
    Load a store and check it belongs to ``company_id``.

    Raises StoreNotFoundError if it does not exist or belongs to another
    company (without revealing which).
    """
    store = db.session.get(Store, store_id)
    if store is None:
        raise StoreNotFoundError("Store not found", {"store_id": store_id})

    if store.company_id != company_id:
        _log_cross_tenant_attempt(
            f"Store {store_id} belongs to company {store.company_id}, not {company_id}",
            caps=caps,
            company_id=company_id,
            store_id=store_id,
        )
        raise StoreNotFoundError("Store not found", {"store_id": store_id})

    return store


def resolve_store(caps: Capabilities, requested_store_id: int | None = None) -> Store:
    """
    Resolve the single effective store for a caller.

    - store scope: always the caller's own store
    - company scope: the requested store, which must belong to the company
    - platform scope: the requested store, any company
    """
    if caps.scope == Scope.STORE:
        if caps.store_id is None:
            raise ScopeError("User is not assigned to a store", {"role": caps.role})
        store = db.session.get(Store, caps.store_id)
        if store is None:
            raise StoreNotFoundError("Store not found", {"store_id": caps.store_id})
        return store

    if requested_store_id is None:
        raise ValidationError("store_id is required", {"field": "store_id"})

    if caps.scope == Scope.COMPANY:
        if caps.company_id is None:
            raise ScopeError("User is not assigned to a company", {"role": caps.role})
        return require_store_in_company(requested_store_id, caps.company_id, caps)

    store = db.session.get(Store, requested_store_id)
    if store is None:
        raise StoreNotFoundError("Store not found", {"store_id": requested_store_id})
    return store


def resolve_sale_store(caps: Capabilities, requested_store_id: int | None = None) -> Store:
    """resolve_store, additionally requiring the store to accept sales."""
    store = resolve_store(caps, requested_store_id)
    if not store.is_active:
        raise StoreInactiveError(
            "Store is not active",
            {"store_id": store.id, "status": store.status},
        )
    return store


def scope_query(query, model, caps: Capabilities, store_id: int | None = None):
    """
    Restrict a query on a model with company_id/store_id columns to what the
    caller may see, optionally narrowed to one store.

    A store_id outside the caller's visibility simply yields no rows.
    """
    if caps.scope == Scope.STORE:
        query = query.filter(model.store_id == caps.store_id)
    elif caps.scope == Scope.COMPANY:
        query = query.filter(model.company_id == caps.company_id)

    if store_id is not None:
        query = query.filter(model.store_id == store_id)
    return query


def _log_cross_tenant_attempt(
    reason: str,
    caps: Capabilities | None = None,
    company_id: int | None = None,
    store_id: int | None = None,
) -> None:
    log_security_event(
        user_id=caps.user_id if caps else None,
        event_type="CROSS_TENANT_ACCESS",
        success=False,
        reason=reason,
        company_id=company_id,
        store_id=store_id,
    )
