# backend/backoffice/routes/inventory.py
"""Catalog and stock API routes"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_capability_flag
from ..errors import BackofficeError, ValidationError
from ..responses import error_response, int_arg, internal_error_response
from ..services import catalog_service, stock_service
from ..validation import optional_str, parse_bool


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


@inventory_bp.get("/items")
@require_auth
def list_items_route():
    """
    List catalog items in the caller's scope.

    Query: store_id, include_inactive, search, page, per_page
    """
    try:
        include_inactive = request.args.get("include_inactive")
        result = catalog_service.list_items(
            g.capabilities,
            store_id=int_arg(request.args, "store_id", minimum=1),
            include_inactive=parse_bool(include_inactive, "include_inactive") if include_inactive else False,
            search=request.args.get("search") or None,
            page=int_arg(request.args, "page", minimum=1),
            per_page=int_arg(request.args, "per_page", minimum=1),
        )
        return jsonify(result), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to list catalog items")


@inventory_bp.post("/items")
@require_auth
@require_capability_flag("can_manage_inventory")
def create_item_route():
    try:
        data = _json_body()
        store_id = data.pop("store_id", None)
        if store_id is not None:
            store_id = int_arg({"store_id": store_id}, "store_id", minimum=1)
        item = catalog_service.create_item(g.capabilities, data, store_id=store_id, actor_id=g.current_user.id)
        return jsonify(item.to_dict()), 201
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to create catalog item")


@inventory_bp.get("/items/<int:item_id>")
@require_auth
def get_item_route(item_id: int):
    try:
        item = catalog_service.get_item(g.capabilities, item_id)
        return jsonify(item.to_dict()), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to get catalog item")


@inventory_bp.put("/items/<int:item_id>")
@require_auth
@require_capability_flag("can_manage_inventory")
def update_item_route(item_id: int):
    """
    Update a catalog item. Only the fields present in the body change.

    current_stock is refused; stock moves through POST /items/<id>/stock.
    """
    try:
        item = catalog_service.update_item(g.capabilities, item_id, _json_body())
        return jsonify(item.to_dict()), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to update catalog item")


@inventory_bp.delete("/items/<int:item_id>")
@require_auth
@require_capability_flag("can_manage_inventory")
def delete_item_route(item_id: int):
    """Soft delete: the item stays referenced by past sales."""
    try:
        item = catalog_service.deactivate_item(g.capabilities, item_id)
        return jsonify(item.to_dict()), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to delete catalog item")


@inventory_bp.post("/items/<int:item_id>/stock")
@require_auth
@require_capability_flag("can_manage_inventory")
def adjust_stock_route(item_id: int):
    """
    Manual stock correction.

    Body: {quantity, operation: add|subtract|set, reason?, allow_negative?}
    """
    try:
        data = _json_body()
        allow_negative = data.get("allow_negative")
        item, movement = stock_service.adjust_stock(
            g.capabilities,
            item_id,
            quantity=data.get("quantity"),
            operation=data.get("operation") or "",
            reason=optional_str(data.get("reason"), "reason", max_length=255),
            allow_negative=parse_bool(allow_negative, "allow_negative") if allow_negative is not None else False,
        )
        return jsonify({"item": item.to_dict(), "movement": movement.to_dict()}), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to adjust stock")


@inventory_bp.get("/items/<int:item_id>/movements")
@require_auth
def item_movements_route(item_id: int):
    try:
        catalog_service.get_item(g.capabilities, item_id)
        movements = stock_service.movements_for_item(g.capabilities, item_id)
        return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to list stock movements")


@inventory_bp.get("/low-stock")
@require_auth
def low_stock_route():
    try:
        items = stock_service.list_low_stock_items(
            g.capabilities,
            store_id=int_arg(request.args, "store_id", minimum=1),
        )
        return jsonify({"items": [i.to_dict() for i in items], "count": len(items)}), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to list low stock items")
