"""
Catalog Item Store.

MULTI-TENANT: every lookup is scoped through the caller's Capabilities; an
item outside the caller's scope is indistinguishable from a missing one.

Stock is never written here except at creation (opening stock); all later
changes go through stock_service.
"""

from __future__ import annotations

import secrets
import string

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import CatalogItemNotFoundError, ConflictError, ItemUnavailableError
from ..extensions import db
from ..models import CatalogItem, Store
from ..permissions import Capabilities
from ..validation import ModelValidationPolicy, enforce_rules_catalog_item, validate_payload
from .pagination import paginate
from .tenant_service import resolve_store, scope_query

ADHOC_SKU_PREFIX = "AUTO-"
ADHOC_SKU_ALPHABET = string.ascii_uppercase + string.digits
ADHOC_SKU_LENGTH = 6
ADHOC_SKU_ATTEMPTS = 10

CATALOG_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "barcode", "name", "description",
        "cost_price_cents", "selling_price_cents", "wholesale_price_cents",
        "current_stock", "min_stock", "reorder_point", "unit",
        "tax_rate_bps", "tax_inclusive",
    },
    required_on_create={"sku", "name", "selling_price_cents"},
)

CATALOG_ITEM_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=CATALOG_ITEM_POLICY.writable_fields - {"current_stock"},
)


def list_items(
    caps: Capabilities,
    *,
    store_id: int | None = None,
    include_inactive: bool = False,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = scope_query(db.session.query(CatalogItem), CatalogItem, caps, store_id)
    if not include_inactive:
        query = query.filter(CatalogItem.is_active.is_(True))
    if search:
        like = f"%{search}%"
        query = query.filter(
            or_(CatalogItem.name.ilike(like), CatalogItem.sku.ilike(like), CatalogItem.barcode == search)
        )
    query = query.order_by(CatalogItem.name.asc(), CatalogItem.id.asc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda i: i.to_dict())


def get_item(caps: Capabilities, item_id: int) -> CatalogItem:
    item = (
        scope_query(db.session.query(CatalogItem), CatalogItem, caps)
        .filter(CatalogItem.id == item_id)
        .first()
    )
    if item is None:
        raise CatalogItemNotFoundError("Catalog item not found", {"item_id": item_id})
    return item


def _sku_taken(company_id: int, sku: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(CatalogItem.id).filter_by(company_id=company_id, sku=sku)
    if exclude_id is not None:
        query = query.filter(CatalogItem.id != exclude_id)
    return query.first() is not None


def _barcode_taken(company_id: int, barcode: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(CatalogItem.id).filter_by(company_id=company_id, barcode=barcode)
    if exclude_id is not None:
        query = query.filter(CatalogItem.id != exclude_id)
    return query.first() is not None


def _commit_unique(patch: dict) -> None:
    """Commit, reporting a lost SKU/barcode race as a conflict."""
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            "SKU or barcode already exists",
            {"sku": patch.get("sku"), "barcode": patch.get("barcode")},
        ) from exc


def create_item(caps: Capabilities, payload: dict, store_id: int | None = None, actor_id: int | None = None) -> CatalogItem:
    """Create a catalog item in the caller's (resolved) store."""
    patch = validate_payload(model=CatalogItem, payload=payload, policy=CATALOG_ITEM_POLICY, partial=False)
    enforce_rules_catalog_item(patch)

    store = resolve_store(caps, store_id)

    if _sku_taken(store.company_id, patch["sku"]):
        raise ConflictError("SKU already exists", {"sku": patch["sku"]})
    barcode = patch.get("barcode")
    if barcode and _barcode_taken(store.company_id, barcode):
        raise ConflictError("Barcode already exists", {"barcode": barcode})

    item = CatalogItem(company_id=store.company_id, store_id=store.id, created_by_user_id=actor_id, **patch)
    db.session.add(item)
    _commit_unique(patch)
    return item


def update_item(caps: Capabilities, item_id: int, payload: dict) -> CatalogItem:
    """
    Patch a catalog item's descriptive and pricing fields.

    Stock is not writable here; use stock_service.adjust_stock. Price rules
    are checked against the merged result, so lowering selling below the
    stored cost is refused.
    """
    patch = validate_payload(model=CatalogItem, payload=payload, policy=CATALOG_ITEM_UPDATE_POLICY, partial=True)
    item = get_item(caps, item_id)

    merged = {
        "cost_price_cents": item.cost_price_cents,
        "selling_price_cents": item.selling_price_cents,
        **patch,
    }
    enforce_rules_catalog_item(merged)
    patch = {key: merged[key] for key in patch}

    if "sku" in patch and _sku_taken(item.company_id, patch["sku"], exclude_id=item.id):
        raise ConflictError("SKU already exists", {"sku": patch["sku"]})
    if patch.get("barcode") and _barcode_taken(item.company_id, patch["barcode"], exclude_id=item.id):
        raise ConflictError("Barcode already exists", {"barcode": patch["barcode"]})

    for key, value in patch.items():
        setattr(item, key, value)
    _commit_unique(patch)
    return item


def deactivate_item(caps: Capabilities, item_id: int) -> CatalogItem:
    """Soft delete. Historical sale lines keep pointing at the row."""
    item = get_item(caps, item_id)
    item.is_active = False
    db.session.commit()
    return item


def load_sale_items(store: Store, item_ids: set[int]) -> dict[int, CatalogItem]:
    """
    Fetch the catalog items referenced by a checkout.

    Every id must be an active item of ``store``; otherwise the whole sale
    is refused with ItemUnavailableError listing the offending ids.
    """
    if not item_ids:
        return {}
    items = (
        db.session.query(CatalogItem)
        .filter(
            CatalogItem.id.in_(item_ids),
            CatalogItem.store_id == store.id,
            CatalogItem.is_active.is_(True),
        )
        .all()
    )
    by_id = {item.id: item for item in items}
    missing = sorted(item_ids - by_id.keys())
    if missing:
        raise ItemUnavailableError(
            "One or more items are unavailable in this store",
            {"item_ids": missing, "store_id": store.id},
        )
    return by_id


def generate_adhoc_sku(company_id: int) -> str:
    for _ in range(ADHOC_SKU_ATTEMPTS):
        suffix = "".join(secrets.choice(ADHOC_SKU_ALPHABET) for _ in range(ADHOC_SKU_LENGTH))
        sku = f"{ADHOC_SKU_PREFIX}{suffix}"
        if not _sku_taken(company_id, sku):
            return sku
    raise ConflictError("Could not allocate an ad-hoc SKU", {"company_id": company_id})


def materialize_adhoc_item(
    store: Store,
    *,
    name: str,
    unit_price_cents: int,
    cost_price_cents: int = 0,
    initial_stock: int,
    actor_id: int | None = None,
) -> CatalogItem:
    """
    Turn a free-text sale line into a real catalog item with effectively
    unlimited stock. Flushed, not committed: it lives or dies with the sale.
    """
    item = CatalogItem(
        company_id=store.company_id,
        store_id=store.id,
        sku=generate_adhoc_sku(store.company_id),
        name=name,
        description="Auto-created for sale",
        cost_price_cents=cost_price_cents,
        selling_price_cents=unit_price_cents,
        current_stock=initial_stock,
        tax_rate_bps=0,
        tax_inclusive=False,
        is_active=True,
        is_adhoc=True,
        created_by_user_id=actor_id,
    )
    db.session.add(item)
    db.session.flush()
    return item
