# backend/backoffice/errors.py
"""
Service-layer error hierarchy.

Every error raised on purpose by a service carries a human message, a
machine-readable ``code`` and a ``details`` dict. Routes translate them to
JSON with ``status_code``; anything that is not a BackofficeError is an
unexpected failure and is answered generically.
"""

from __future__ import annotations


class BackofficeError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


# --- 400: malformed input -------------------------------------------------

class ValidationError(BackofficeError, ValueError):
    """400-level input problem."""
    status_code = 400
    code = "validation_error"


# --- 400: business rules ---------------------------------------------------

class BusinessRuleError(BackofficeError):
    status_code = 400
    code = "business_rule_violation"


class InsufficientStockError(BusinessRuleError):
    code = "insufficient_stock"


class ItemUnavailableError(BusinessRuleError):
    """Referenced catalog item is missing, inactive, or belongs to another store."""
    code = "item_unavailable"


class SaleAlreadyCancelledError(BusinessRuleError):
    code = "sale_already_cancelled"


class SaleStateError(BusinessRuleError):
    code = "invalid_sale_state"


# --- 403: scope / authorization -------------------------------------------

class ScopeError(BackofficeError):
    status_code = 403
    code = "forbidden"


class StoreInactiveError(ScopeError):
    code = "store_inactive"


class PermissionDeniedError(ScopeError):
    code = "permission_denied"


# --- 404 ---------------------------------------------------------------------

class NotFoundError(BackofficeError):
    status_code = 404
    code = "not_found"


class StoreNotFoundError(NotFoundError):
    code = "store_not_found"


class SaleNotFoundError(NotFoundError):
    code = "sale_not_found"


class CatalogItemNotFoundError(NotFoundError):
    code = "catalog_item_not_found"


# --- 409 / 503 ---------------------------------------------------------------

class ConflictError(BackofficeError, ValueError):
    """409-level conflict (duplicate SKU, concurrent modification)."""
    status_code = 409
    code = "conflict"


class SaleTimeoutError(BackofficeError):
    """The sale transaction outlived its deadline and was rolled back."""
    status_code = 503
    code = "sale_timeout"
