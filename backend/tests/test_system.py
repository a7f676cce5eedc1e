# Overview: Pytest coverage for health, sync routes, error handlers and CLI commands.

import pytest

from conftest import DEFAULT_PASSWORD, auth_headers, get_auth_token
from stockline.extensions import get_local_store, get_sync_manager


class TestHealth:
    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.json["status"] == "healthy"
        assert set(response.json["checks"]) == {"remote_database", "local_cache", "sync"}

    def test_offline_is_degraded(self, client):
        get_sync_manager().set_online(False)

        response = client.get('/health')

        assert response.status_code == 200
        assert response.json["status"] == "degraded"
        assert response.json["checks"]["sync"]["status"] == "degraded"


class TestErrorHandlers:
    def test_unknown_route_is_json_404(self, client):
        response = client.get('/api/does-not-exist')
        assert response.status_code == 404
        assert response.json == {"error": "Not found"}

    def test_wrong_method_is_json_405(self, client):
        response = client.delete('/api/auth/login')
        assert response.status_code == 405
        assert response.json == {"error": "Method not allowed"}

    def test_cors_for_allowed_origin_only(self, client):
        allowed = client.get('/health', headers={'Origin': 'http://localhost:5173'})
        assert allowed.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

        foreign = client.get('/health', headers={'Origin': 'http://evil.example'})
        assert "Access-Control-Allow-Origin" not in foreign.headers


class TestSyncRoutes:
    def test_status_and_run(self, client, tenant_a):
        status = client.get('/api/sync/status', headers=tenant_a["headers"])
        assert status.status_code == 200
        assert status.json["pending"] == 0
        assert status.json["online"] is True

        get_local_store().save("stores", {"id": "branch-1", "name": "Branch"})
        report = client.post('/api/sync/run', headers=tenant_a["headers"]).json
        assert report["skipped"] is False
        assert report["synced"] == 1

    def test_offline_then_online(self, client, tenant_a, developer):
        offline = client.post('/api/sync/offline', headers=developer["headers"])
        assert offline.json["online"] is False

        get_local_store().save("stores", {"id": "branch-2", "name": "Branch"})
        report = client.post('/api/sync/run', headers=tenant_a["headers"]).json
        assert report["skipped"] is True
        assert report["reason"] == "offline"

        online = client.post('/api/sync/online', headers=developer["headers"])
        assert online.json["online"] is True
        assert online.json["pending"] == 0

    def test_dead_letters_and_requeue(self, client, tenant_a):
        store = get_local_store()
        # A products row without its required columns cannot be written remotely
        store.save("products", {"id": 999, "store_id": tenant_a["store_id"]})
        entry = store.list_pending_operations()[0]
        store.dead_letter(entry.id, "IntegrityError: NOT NULL constraint failed")

        listed = client.get('/api/sync/dead-letters', headers=tenant_a["headers"])
        assert [d["id"] for d in listed.json["items"]] == [entry.id]

        response = client.post(f'/api/sync/dead-letters/{entry.id}/requeue', headers=tenant_a["headers"])
        assert response.json == {"ok": True, "operation_id": entry.id}
        assert client.post('/api/sync/dead-letters/424242/requeue', headers=tenant_a["headers"]).status_code == 404


class TestSyncTenantScope:
    @pytest.fixture
    def dead_user_a(self, tenant_a):
        """A dead-lettered user snapshot owned by Store A."""
        store = get_local_store()
        store.save("users", {
            "id": "staff-a",
            "username": "staff_a",
            "email": "staff_a@acme.com",
            "password_hash": "$2b$12$SECRETHASH",
            "role": "staff",
            "store_id": tenant_a["store_id"],
        })
        entry = store.list_pending_operations()[-1]
        store.dead_letter(entry.id, "IntegrityError: UNIQUE constraint failed")
        return entry

    def test_other_store_cannot_see_dead_letters(self, client, tenant_b, dead_user_a):
        response = client.get('/api/sync/dead-letters', headers=tenant_b["headers"])

        assert response.status_code == 200
        assert response.json["items"] == []
        assert "SECRETHASH" not in response.get_data(as_text=True)

    def test_owner_sees_own_dead_letters_without_secrets(self, client, tenant_a, dead_user_a):
        items = client.get('/api/sync/dead-letters', headers=tenant_a["headers"]).json["items"]

        assert [d["id"] for d in items] == [dead_user_a.id]
        assert items[0]["data"]["email"] == "staff_a@acme.com"
        assert "password_hash" not in items[0]["data"]

    def test_other_store_cannot_requeue(self, client, tenant_b, dead_user_a):
        response = client.post(f'/api/sync/dead-letters/{dead_user_a.id}/requeue', headers=tenant_b["headers"])

        assert response.status_code == 404
        assert get_local_store().get_operation(dead_user_a.id).status == "dead"

    def test_developer_sees_every_store(self, client, tenant_b, developer, dead_user_a):
        items = client.get('/api/sync/dead-letters', headers=developer["headers"]).json["items"]
        assert [d["id"] for d in items] == [dead_user_a.id]

        response = client.post(f'/api/sync/dead-letters/{dead_user_a.id}/requeue', headers=developer["headers"])
        assert response.status_code == 200

    def test_store_owner_cannot_switch_network(self, client, tenant_a):
        assert client.post('/api/sync/offline', headers=tenant_a["headers"]).status_code == 403
        assert client.post('/api/sync/online', headers=tenant_a["headers"]).status_code == 403
        assert get_sync_manager().online is True


class TestCli:
    def test_create_developer(self, app, client, db_session):
        runner = app.test_cli_runner()
        args = ["users", "create-developer", "--username", "ops", "--email", "ops@stockline.local",
                "--password", DEFAULT_PASSWORD]

        result = runner.invoke(args=args)

        assert result.exit_code == 0, result.output
        assert "PASS Created developer user: ops" in result.output
        headers = auth_headers(get_auth_token(client, "ops"))
        assert client.post('/api/sync/offline', headers=headers).json["online"] is False
        assert client.post('/api/sync/online', headers=headers).json["online"] is True

        again = runner.invoke(args=args)
        assert "FAIL User 'ops' already exists" in again.output

    def test_system_init_with_demo(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["system", "init", "--demo"])

        assert result.exit_code == 0, result.output
        assert "PASS Created user: demo" in result.output

        again = runner.invoke(args=["system", "init", "--demo"])
        assert "WARN  Demo user already exists" in again.output

    def test_sync_status_and_run(self, app, db_session):
        runner = app.test_cli_runner()
        get_local_store().save("stores", {"id": "cli-1", "name": "CLI"})

        status = runner.invoke(args=["sync", "status"])
        assert "Pending:       1" in status.output

        run = runner.invoke(args=["sync", "run"])
        assert "1 synced" in run.output

    def test_notifications_reconcile_all_stores(self, app, client, tenant_a):
        client.post('/api/products', json={'name': 'Low', 'price_cents': 1, 'quantity': 0},
                    headers=tenant_a["headers"])
        runner = app.test_cli_runner()

        result = runner.invoke(args=["notifications", "reconcile"])
        assert f"PASS {tenant_a['store_id']}: created 0" in result.output

        listed = runner.invoke(args=["notifications", "list", "--store-id", tenant_a["store_id"]])
        assert "Out of Stock Alert" in listed.output
