# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/stockline/routes/products.py
"""
Product management routes.

MULTI-TENANT: every operation is scoped to the caller's store; the data
adapter resolves it from g.current_user. Products of other stores answer 404.
Every write re-runs low-stock notification reconciliation for the store.
"""
from flask import Blueprint, request, current_app

from ..decorators import require_auth, require_store
from ..errors import PlanLimitError, TenantAccessError
from ..extensions import get_data_adapter
from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "sku", "barcode", "serial_number", "description",
        "price_cents", "cost_cents", "quantity", "min_stock_level",
        "brand", "model", "color", "storage", "condition", "status",
    },
    required_on_create={"name", "price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    return {"items": get_data_adapter().get_products()}


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    product = get_data_adapter().get_product(product_id)
    if product is None:
        return {"error": "Product not found"}, 404
    return product


@products_bp.post("")
@require_auth
@require_store
def create_product_route():
    """
    Create a product in the caller's store.

    403 when the store's plan product limit is reached.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        created = get_data_adapter().add_product(patch)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except PlanLimitError as e:
        return {"error": str(e), "limit": e.limit, "allowed": e.allowed, "tier": e.tier}, 403

    if created is None:
        current_app.logger.error("Product create failed: remote database unavailable")
        return {"error": "Remote database unavailable"}, 503
    return created, 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_store
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        updated = get_data_adapter().update_product(product_id, patch)
    except TenantAccessError:
        return {"error": "Product not found"}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    if updated is None:
        return {"error": "Remote database unavailable"}, 503
    return updated


@products_bp.delete("/<int:product_id>")
@require_auth
@require_store
def delete_product_route(product_id: int):
    try:
        deleted = get_data_adapter().delete_product(product_id)
    except TenantAccessError:
        return {"error": "Product not found"}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    if not deleted:
        return {"error": "Remote database unavailable"}, 503
    return {"ok": True}, 200
