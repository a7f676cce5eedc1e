# Overview: Flask API routes for customer operations; parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import require_auth, require_store
from ..errors import TenantAccessError
from ..extensions import get_data_adapter
from ..models import Customer
from ..validation import ModelValidationPolicy, validate_payload, ValidationError, ConflictError

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone", "address", "notes"},
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
def list_customers():
    return {"items": get_data_adapter().get_customers()}


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    customer = get_data_adapter().get_customer(customer_id)
    if customer is None:
        return {"error": "Customer not found"}, 404
    return customer


@customers_bp.get("/<int:customer_id>/sales")
@require_auth
def customer_sales_route(customer_id: int):
    adapter = get_data_adapter()
    if adapter.get_customer(customer_id) is None:
        return {"error": "Customer not found"}, 404
    return {"items": adapter.get_sales_by_customer(customer_id)}


@customers_bp.get("/<int:customer_id>/store-credits")
@require_auth
def customer_store_credits_route(customer_id: int):
    adapter = get_data_adapter()
    if adapter.get_customer(customer_id) is None:
        return {"error": "Customer not found"}, 404
    return {"items": adapter.get_store_credits(customer_id)}


@customers_bp.post("")
@require_auth
@require_store
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    except ValidationError as e:
        return {"error": str(e)}, 400

    created = get_data_adapter().add_customer(patch)
    if created is None:
        return {"error": "Remote database unavailable"}, 503
    return created, 201


@customers_bp.put("/<int:customer_id>")
@require_auth
@require_store
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        updated = get_data_adapter().update_customer(customer_id, patch)
    except TenantAccessError:
        return {"error": "Customer not found"}, 404

    if updated is None:
        return {"error": "Remote database unavailable"}, 503
    return updated


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_store
def delete_customer_route(customer_id: int):
    try:
        deleted = get_data_adapter().delete_customer(customer_id)
    except TenantAccessError:
        return {"error": "Customer not found"}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    if not deleted:
        return {"error": "Remote database unavailable"}, 503
    return {"ok": True}, 200
