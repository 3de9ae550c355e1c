"""
Role capability table.

WHY: Every "who may see/cancel/adjust what" decision derives from this one
table. Services and decorators consume the resolved Capabilities struct
(see permission_service.resolve_capabilities) instead of branching on role
names.

SCOPES:
- platform: any company, any store
- company:  any store of the user's company
- store:    only the user's own store; a store in the request is ignored
"""

from __future__ import annotations

from dataclasses import dataclass


class Scope:
    PLATFORM = "platform"
    COMPANY = "company"
    STORE = "store"


# role -> (scope, can_process_sales, can_cancel_sales, can_manage_inventory, can_view_reports, own_sales_only)
ROLE_CAPABILITIES: dict[str, tuple] = {
    "super_admin":      (Scope.PLATFORM, True,  True,  True,  True,  False),
    "company_admin":    (Scope.COMPANY,  True,  True,  True,  True,  False),
    "dg":               (Scope.COMPANY,  False, False, False, True,  False),
    "accountant":       (Scope.COMPANY,  False, False, False, True,  False),
    "store_manager":    (Scope.STORE,    True,  True,  True,  True,  False),
    "store_accountant": (Scope.STORE,    False, False, False, True,  False),
    "employee":         (Scope.STORE,    True,  False, False, False, True),
}

CAPABILITY_FLAGS = (
    "can_process_sales",
    "can_cancel_sales",
    "can_manage_inventory",
    "can_view_reports",
)


@dataclass(frozen=True)
class Capabilities:
    """What a caller may do and which stores they can see."""
    user_id: int
    role: str
    scope: str
    company_id: int | None
    store_id: int | None
    can_process_sales: bool = False
    can_cancel_sales: bool = False
    can_manage_inventory: bool = False
    can_view_reports: bool = False
    # Employees only see the sales they rang up themselves
    own_sales_only: bool = False

    def allows(self, flag: str) -> bool:
        if flag not in CAPABILITY_FLAGS:
            raise KeyError(f"Unknown capability: {flag}")
        return bool(getattr(self, flag))

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "scope": self.scope,
            "company_id": self.company_id,
            "store_id": self.store_id,
            "can_process_sales": self.can_process_sales,
            "can_cancel_sales": self.can_cancel_sales,
            "can_manage_inventory": self.can_manage_inventory,
            "can_view_reports": self.can_view_reports,
            "own_sales_only": self.own_sales_only,
        }
