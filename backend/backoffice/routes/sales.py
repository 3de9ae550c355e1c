# backend/backoffice/routes/sales.py
"""Sales API routes with capability enforcement"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_capability_flag
from ..errors import BackofficeError, ValidationError
from ..models.sales import SALE_STATUSES
from ..responses import datetime_arg, error_response, int_arg, internal_error_response
from ..services import sales_service
from ..services.sale_request import parse_sale_request
from ..services.sales_service import SaleFilters
from ..validation import MAX_NOTES_LENGTH, optional_str


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _filters_from_args(args) -> SaleFilters:
    status = args.get("status") or None
    if status is not None and status not in SALE_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(SALE_STATUSES)}",
            {"field": "status"},
        )
    return SaleFilters(
        status=status,
        store_id=int_arg(args, "store_id", minimum=1),
        cashier_id=int_arg(args, "cashier_id", minimum=1),
        date_from=datetime_arg(args, "from") or datetime_arg(args, "date_from"),
        date_to=datetime_arg(args, "to") or datetime_arg(args, "date_to"),
        page=int_arg(args, "page", minimum=1),
        per_page=int_arg(args, "per_page", minimum=1),
    )


@sales_bp.post("")
@require_auth
@require_capability_flag("can_process_sales")
def create_sale_route():
    """
    Check out a basket: price it, take the stock and record the sale.

    Requires: can_process_sales
    Body: {store_id?, items: [...], payment: {...}, customer?, notes?, channel?}
    """
    try:
        sale_request = parse_sale_request(request.get_json(silent=True))
        sale = sales_service.create_sale(g.capabilities, sale_request)
        return jsonify(sale.to_dict()), 201
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to create sale")


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    List sales visible to the caller, newest first.

    Query: status, store_id, cashier_id, from, to, page, per_page
    Employees only ever see their own sales.
    """
    try:
        filters = _filters_from_args(request.args)
        return jsonify(sales_service.list_sales(g.capabilities, filters)), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to list sales")


@sales_bp.get("/mine")
@require_auth
def list_my_sales_route():
    try:
        filters = _filters_from_args(request.args)
        return jsonify(sales_service.list_sales(g.capabilities, filters, mine=True)), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to list own sales")


@sales_bp.get("/summary")
@require_auth
@require_capability_flag("can_view_reports")
def sales_summary_route():
    """Aggregates over completed sales in scope. Requires: can_view_reports"""
    try:
        filters = _filters_from_args(request.args)
        return jsonify(sales_service.summarize_sales(g.capabilities, filters)), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to summarize sales")


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(g.capabilities, sale_id)
        return jsonify(sale.to_dict()), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to get sale")


@sales_bp.post("/<int:sale_id>/cancel")
@require_auth
@require_capability_flag("can_cancel_sales")
def cancel_sale_route(sale_id: int):
    """
    Cancel a sale and restore its stock.

    Requires: can_cancel_sales
    Body: {reason?}
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        reason = optional_str(data.get("reason"), "reason", max_length=MAX_NOTES_LENGTH)
        sale = sales_service.cancel_sale(g.capabilities, sale_id, reason)
        return jsonify(sale.to_dict()), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "Failed to cancel sale")
