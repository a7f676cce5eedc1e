# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/stockline/routes/sales.py
"""
Sales routes.

POST records a completed sale: stock is decremented per line, customer
totals are updated, and low-stock notifications are reconciled.

Body:
    {
      "customer_id": 3,                       # optional
      "items": [{"product_id": 7, "quantity": 2, "price_cents": 1999}],
      "payments": [{"method": "cash", "amount_cents": 3998}],
      "tax_cents": 0, "discount_cents": 0, "notes": "..."
    }
"""

from flask import Blueprint, request, current_app

from ..decorators import require_auth, require_store
from ..errors import TenantAccessError
from ..extensions import get_data_adapter
from ..validation import ValidationError, ConflictError

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_auth
def list_sales():
    customer_id = request.args.get("customer_id", type=int)
    adapter = get_data_adapter()
    if customer_id is not None:
        return {"items": adapter.get_sales_by_customer(customer_id)}
    return {"items": adapter.get_sales()}


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    sale = get_data_adapter().get_sale(sale_id)
    if sale is None:
        return {"error": "Sale not found"}, 404
    return sale


@sales_bp.post("")
@require_auth
@require_store
def create_sale_route():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400

    try:
        sale = get_data_adapter().add_sale(payload)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except TenantAccessError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    if sale is None:
        current_app.logger.error("Sale create failed: remote database unavailable")
        return {"error": "Remote database unavailable"}, 503
    return sale, 201


@sales_bp.put("/<int:sale_id>")
@require_auth
@require_store
def update_sale_route(sale_id: int):
    """Only status and notes can change after a sale is recorded."""
    payload = request.get_json(silent=True) or {}
    try:
        sale = get_data_adapter().update_sale(sale_id, payload)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except TenantAccessError:
        return {"error": "Sale not found"}, 404

    if sale is None:
        return {"error": "Remote database unavailable"}, 503
    return sale
