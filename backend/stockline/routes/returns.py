# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

# backend/stockline/routes/returns.py
"""
Returns routes.

A return restocks its items flagged return_to_inventory when it is created
as completed or later transitions to completed. store_credit returns issue
a store credit to the customer at the same moment.
"""

from flask import Blueprint, request

from ..decorators import require_auth, require_store
from ..errors import TenantAccessError
from ..extensions import get_data_adapter
from ..validation import ValidationError

returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.get("")
@require_auth
def list_returns():
    sale_id = request.args.get("sale_id", type=int)
    adapter = get_data_adapter()
    if sale_id is not None:
        return {"items": adapter.get_returns_by_sale(sale_id)}
    return {"items": adapter.get_returns()}


@returns_bp.get("/<int:return_id>")
@require_auth
def get_return_route(return_id: int):
    return_doc = get_data_adapter().get_return(return_id)
    if return_doc is None:
        return {"error": "Return not found"}, 404
    return return_doc


@returns_bp.post("")
@require_auth
@require_store
def create_return_route():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400

    try:
        return_doc = get_data_adapter().add_return(payload)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except TenantAccessError as e:
        return {"error": str(e)}, 404

    if return_doc is None:
        return {"error": "Remote database unavailable"}, 503
    return return_doc, 201


@returns_bp.put("/<int:return_id>")
@require_auth
@require_store
def update_return_route(return_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        return_doc = get_data_adapter().update_return(return_id, payload)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except TenantAccessError:
        return {"error": "Return not found"}, 404

    if return_doc is None:
        return {"error": "Remote database unavailable"}, 503
    return return_doc
