# Overview: Pytest coverage for tenant isolation behavior over the HTTP API.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for core resources.

Two stores are registered, each with its own owner. Store B must not be
able to read or write anything Store A owns; foreign records answer 404
(not 403) so their existence is not revealed.
"""

import pytest

from stockline.services import subscription_service
from stockline.services.subscription_service import Plan


@pytest.fixture
def product_a(client, tenant_a):
    response = client.post(
        '/api/products',
        json={'name': 'Product A', 'sku': 'PROD-A-001', 'price_cents': 1000, 'quantity': 10},
        headers=tenant_a["headers"],
    )
    assert response.status_code == 201
    return response.json


@pytest.fixture
def customer_a(client, tenant_a):
    response = client.post('/api/customers', json={'name': 'Customer A'}, headers=tenant_a["headers"])
    assert response.status_code == 201
    return response.json


@pytest.fixture
def sale_a(client, tenant_a, product_a, customer_a):
    response = client.post('/api/sales', json={
        'customer_id': customer_a["id"],
        'items': [{'product_id': product_a["id"], 'quantity': 1, 'price_cents': 1000}],
        'payments': [{'method': 'card', 'amount_cents': 1000}],
    }, headers=tenant_a["headers"])
    assert response.status_code == 201
    return response.json


class TestProducts:
    def test_owner_sees_own_products(self, client, tenant_a, product_a):
        response = client.get('/api/products', headers=tenant_a["headers"])
        assert [p["id"] for p in response.json["items"]] == [product_a["id"]]

    def test_cross_tenant_read_blocked(self, client, tenant_b, product_a):
        assert client.get(f'/api/products/{product_a["id"]}', headers=tenant_b["headers"]).status_code == 404
        assert client.get('/api/products', headers=tenant_b["headers"]).json["items"] == []

    def test_cross_tenant_write_blocked(self, client, tenant_a, tenant_b, product_a):
        response = client.put(
            f'/api/products/{product_a["id"]}',
            json={'quantity': 0},
            headers=tenant_b["headers"],
        )
        assert response.status_code == 404
        assert client.delete(f'/api/products/{product_a["id"]}', headers=tenant_b["headers"]).status_code == 404

        own = client.get(f'/api/products/{product_a["id"]}', headers=tenant_a["headers"])
        assert own.json["quantity"] == 10

    def test_legacy_camel_case_fields_accepted(self, client, tenant_a):
        response = client.post(
            '/api/products',
            json={'name': 'Legacy', 'priceCents': 500, 'minStockLevel': 2},
            headers=tenant_a["headers"],
        )
        assert response.status_code == 201
        assert response.json["min_stock_level"] == 2

    @pytest.mark.parametrize(
        "payload",
        [
            {"price_cents": 100},
            {"name": "Bad", "price_cents": -1},
            {"name": "Bad", "price_cents": 100, "quantity": -1},
            {"name": "Bad", "price_cents": 10.5},
            {"name": "Bad", "price_cents": 100, "store_id": "someone-else"},
        ],
    )
    def test_invalid_product_rejected(self, client, tenant_a, payload):
        response = client.post('/api/products', json=payload, headers=tenant_a["headers"])
        assert response.status_code == 400

    def test_duplicate_serial_conflicts(self, client, tenant_a, tenant_b):
        body = {'name': 'Phone', 'price_cents': 50000, 'serial_number': 'IMEI-1'}
        assert client.post('/api/products', json=body, headers=tenant_a["headers"]).status_code == 201
        assert client.post('/api/products', json=body, headers=tenant_b["headers"]).status_code == 409

    def test_plan_limit_returns_403(self, client, tenant_b, monkeypatch):
        monkeypatch.setitem(subscription_service.PLANS, "free", Plan("free", 1, 2, 1, frozenset()))
        body = {'name': 'Only', 'price_cents': 100}
        assert client.post('/api/products', json=body, headers=tenant_b["headers"]).status_code == 201

        response = client.post('/api/products', json=body, headers=tenant_b["headers"])
        assert response.status_code == 403
        assert response.json["limit"] == "products"
        assert response.json["allowed"] == 1


class TestCustomersAndSales:
    def test_cross_tenant_customer_blocked(self, client, tenant_b, customer_a):
        assert client.get(f'/api/customers/{customer_a["id"]}', headers=tenant_b["headers"]).status_code == 404
        assert client.get(f'/api/customers/{customer_a["id"]}/sales', headers=tenant_b["headers"]).status_code == 404
        response = client.put(
            f'/api/customers/{customer_a["id"]}',
            json={'name': 'Stolen'},
            headers=tenant_b["headers"],
        )
        assert response.status_code == 404

    def test_customer_history(self, client, tenant_a, customer_a, sale_a):
        sales = client.get(f'/api/customers/{customer_a["id"]}/sales', headers=tenant_a["headers"])
        assert [s["id"] for s in sales.json["items"]] == [sale_a["id"]]

        customer = client.get(f'/api/customers/{customer_a["id"]}', headers=tenant_a["headers"]).json
        assert customer["total_purchases"] == 1
        assert customer["total_spent_cents"] == 1000

    def test_customer_with_sales_cannot_be_deleted(self, client, tenant_a, customer_a, sale_a):
        response = client.delete(f'/api/customers/{customer_a["id"]}', headers=tenant_a["headers"])
        assert response.status_code == 409

    def test_cross_tenant_sale_blocked(self, client, tenant_b, sale_a):
        assert client.get(f'/api/sales/{sale_a["id"]}', headers=tenant_b["headers"]).status_code == 404
        assert client.get('/api/sales', headers=tenant_b["headers"]).json["items"] == []

    def test_selling_foreign_product_blocked(self, client, tenant_b, product_a):
        response = client.post('/api/sales', json={
            'items': [{'product_id': product_a["id"], 'quantity': 1, 'price_cents': 1}],
        }, headers=tenant_b["headers"])
        assert response.status_code == 404

    def test_oversell_conflicts(self, client, tenant_a, product_a):
        response = client.post('/api/sales', json={
            'items': [{'product_id': product_a["id"], 'quantity': 99, 'price_cents': 1000}],
        }, headers=tenant_a["headers"])
        assert response.status_code == 409


class TestReturns:
    def test_return_flow(self, client, tenant_a, tenant_b, product_a, customer_a, sale_a):
        response = client.post('/api/returns', json={
            'original_sale_id': sale_a["id"],
            'return_type': 'store_credit',
            'status': 'completed',
            'items': [{'product_id': product_a["id"], 'returned_quantity': 1, 'refund_amount_cents': 1000}],
        }, headers=tenant_a["headers"])
        assert response.status_code == 201
        return_id = response.json["id"]

        product = client.get(f'/api/products/{product_a["id"]}', headers=tenant_a["headers"]).json
        assert product["quantity"] == 10

        credits = client.get(f'/api/customers/{customer_a["id"]}/store-credits', headers=tenant_a["headers"])
        assert len(credits.json["items"]) == 1

        listed = client.get(f'/api/returns?sale_id={sale_a["id"]}', headers=tenant_a["headers"])
        assert [r["id"] for r in listed.json["items"]] == [return_id]

        assert client.get(f'/api/returns/{return_id}', headers=tenant_b["headers"]).status_code == 404

    def test_invalid_return_type(self, client, tenant_a, product_a, sale_a):
        response = client.post('/api/returns', json={
            'original_sale_id': sale_a["id"],
            'return_type': 'swap',
            'items': [{'product_id': product_a["id"], 'returned_quantity': 1}],
        }, headers=tenant_a["headers"])
        assert response.status_code == 400
