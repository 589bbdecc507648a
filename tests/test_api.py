"""HTTP surface: auth, listing, patching, assignment and checkout."""

from datetime import datetime, timedelta, timezone

import pytest

VARIANT = {"duration_label": "1 Month", "duration_value": 1, "duration_unit": "months", "price": "999"}


def _assign(client, headers, user_id=42, product_id="prod-1", **extra):
    payload = {"user_id": user_id, "product_id": product_id, "variant": VARIANT, **extra}
    response = client.post("/api/admin/subscriptions/assign", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealthAndAuth:
    def test_health(self, test_client):
        response = test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "reconciliation": False}

    def test_admin_routes_require_token(self, test_client):
        assert test_client.get("/api/admin/me").status_code == 401
        assert test_client.get("/api/admin/subscriptions/1", headers={"Authorization": "Bearer nope"}).status_code == 401

    def test_wrong_password(self, test_client):
        response = test_client.post("/api/admin/login", json={"email": "ops@example.com", "password": "nope"})
        assert response.status_code == 401

    def test_me(self, test_client, auth_headers):
        response = test_client.get("/api/admin/me", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["email"] == "ops@example.com"


class TestSubscriptionRoutes:
    def test_assign_and_read_back(self, test_client, auth_headers):
        created = _assign(test_client, auth_headers)

        response = test_client.get(f"/api/admin/subscriptions/{created['id']}", headers=auth_headers)

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "active"
        assert body["stored_status"] == "active"
        assert body["payment_status"] == "completed"
        assert body["payment_id"].startswith("MANUAL_ADMIN_")
        assert body["is_active"] is True
        assert body["version"] == 1
        assert body["metadata"]["changes"][0]["changed_by"] == "ops@example.com"

    def test_listing_reports_real_time_status_and_statistics(self, test_client, auth_headers):
        start = (datetime.now(timezone.utc) - timedelta(days=25)).isoformat()
        _assign(test_client, auth_headers, product_id="prod-1", start_date=start)
        _assign(test_client, auth_headers, product_id="prod-2")
        _assign(test_client, auth_headers, user_id=7)

        response = test_client.get(
            "/api/admin/users/42/subscriptions",
            params={"sort_by": "start_date", "sort_order": "asc", "limit": 1},
            headers=auth_headers,
        )

        body = response.json()
        assert response.status_code == 200
        assert body["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}
        assert body["items"][0]["product_id"] == "prod-1"
        assert body["items"][0]["status"] == "expiresoon"
        assert body["items"][0]["stored_status"] == "active"
        assert body["items"][0]["needs_status_update"] is True
        assert body["statistics"]["total"] == 2
        assert body["statistics"]["expiresoon"] == 1
        assert body["statistics"]["active"] == 1
        assert body["statistics"]["total_revenue"] == "1998"

    def test_listing_rejects_unknown_sort_field(self, test_client, auth_headers):
        response = test_client.get("/api/admin/users/42/subscriptions", params={"sort_by": "price"}, headers=auth_headers)
        assert response.status_code == 400

    def test_patch_extends_and_records_history(self, test_client, auth_headers):
        created = _assign(test_client, auth_headers)
        old_end = datetime.fromisoformat(created["end_date"])

        response = test_client.patch(
            f"/api/admin/subscriptions/{created['id']}",
            json={"version": 1, "extend_duration": 10, "extend_unit": "days", "notes": "goodwill", "color": "red"},
            headers=auth_headers,
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert datetime.fromisoformat(body["subscription"]["end_date"]) == old_end + timedelta(days=10)
        assert body["subscription"]["version"] == 2
        assert [change["field"] for change in body["changes"]] == ["extension", "notes"]

        history = test_client.get(f"/api/admin/subscriptions/{created['id']}/history", headers=auth_headers).json()
        assert [change["field"] for change in history["changes"]] == ["created", "extension", "notes"]
        assert history["notes"][0]["note"] == "goodwill"

    def test_patch_with_stale_version_conflicts(self, test_client, auth_headers):
        created = _assign(test_client, auth_headers)
        url = f"/api/admin/subscriptions/{created['id']}"
        assert test_client.patch(url, json={"version": 1, "status": "expired"}, headers=auth_headers).status_code == 200

        response = test_client.patch(url, json={"version": 1, "status": "active"}, headers=auth_headers)

        assert response.status_code == 409

    @pytest.mark.parametrize(
        "payload",
        [
            {"version": 1, "status": "paused"},
            {"version": 1, "historical_article_limit": -1},
            {"version": 1, "extend_duration": 2},
            {"version": 1, "extend_duration": 2, "extend_unit": "fortnights"},
            {"version": 1, "extend_duration": 10**9, "extend_unit": "days"},
            {"version": 1, "notes": "  "},
        ],
    )
    def test_invalid_patch_is_a_bad_request(self, test_client, auth_headers, payload):
        created = _assign(test_client, auth_headers)

        response = test_client.patch(f"/api/admin/subscriptions/{created['id']}", json=payload, headers=auth_headers)

        assert response.status_code == 400

    def test_patch_requires_version(self, test_client, auth_headers):
        created = _assign(test_client, auth_headers)
        response = test_client.patch(
            f"/api/admin/subscriptions/{created['id']}", json={"status": "expired"}, headers=auth_headers
        )
        assert response.status_code == 422

    def test_unknown_subscription(self, test_client, auth_headers):
        assert test_client.get("/api/admin/subscriptions/999", headers=auth_headers).status_code == 404
        assert test_client.get("/api/admin/subscriptions/999/history", headers=auth_headers).status_code == 404
        response = test_client.patch(
            "/api/admin/subscriptions/999", json={"version": 1, "status": "expired"}, headers=auth_headers
        )
        assert response.status_code == 404

    def test_assign_rejects_bad_variant(self, test_client, auth_headers):
        payload = {"user_id": 42, "product_id": "prod-1", "variant": {**VARIANT, "duration_unit": "fortnights"}}
        response = test_client.post("/api/admin/subscriptions/assign", json=payload, headers=auth_headers)
        assert response.status_code == 400

    def test_assign_rejects_out_of_range_duration(self, test_client, auth_headers):
        payload = {"user_id": 42, "product_id": "prod-1", "variant": {**VARIANT, "duration_value": 10**6}}
        response = test_client.post("/api/admin/subscriptions/assign", json=payload, headers=auth_headers)
        assert response.status_code == 400

    def test_renew_chains_subscriptions(self, test_client, auth_headers):
        created = _assign(test_client, auth_headers)

        response = test_client.post(
            f"/api/admin/subscriptions/{created['id']}/renew", json={"variant": VARIANT}, headers=auth_headers
        )

        assert response.status_code == 201
        renewed = response.json()
        assert renewed["replaced_subscription_id"] == created["id"]
        assert renewed["start_date"] == created["end_date"]
        previous = test_client.get(f"/api/admin/subscriptions/{created['id']}", headers=auth_headers).json()
        assert previous["is_latest"] is False

    def test_reconcile_endpoint(self, test_client, auth_headers):
        start = (datetime.now(timezone.utc) - timedelta(days=60)).isoformat()
        created = _assign(test_client, auth_headers, start_date=start)

        response = test_client.post("/api/admin/subscriptions/reconcile", json={"user_id": 42}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["expired"] == 1
        stored = test_client.get(f"/api/admin/subscriptions/{created['id']}", headers=auth_headers).json()
        assert stored["stored_status"] == "expired"
        assert stored["last_status_check"] is not None


class TestCheckoutAndAccess:
    def test_checkout_then_access_then_repurchase_refused(self, test_client, auth_headers):
        payload = {"user_id": 42, "product_id": "prod-1", "variant": VARIANT, "payment_id": "pay_1"}

        created = test_client.post("/api/checkout/complete", json=payload, headers=auth_headers)
        assert created.status_code == 201
        assert created.json()["payment_id"] == "pay_1"

        access = test_client.get("/api/access/42/prod-1", headers=auth_headers).json()
        assert access["has_access"] is True
        assert access["status"] == "active"
        assert access["subscription"]["id"] == created.json()["id"]

        repeat = test_client.post("/api/checkout/complete", json={**payload, "payment_id": "pay_2"}, headers=auth_headers)
        assert repeat.status_code == 409

    def test_checkout_with_unknown_payment_status(self, test_client, auth_headers):
        payload = {"user_id": 42, "product_id": "prod-1", "variant": VARIANT, "payment_status": "maybe"}
        response = test_client.post("/api/checkout/complete", json=payload, headers=auth_headers)
        assert response.status_code == 400

    def test_no_access_without_subscription(self, test_client, auth_headers):
        access = test_client.get("/api/access/42/prod-1", headers=auth_headers).json()
        assert access == {"has_access": False, "is_active": False, "status": None, "subscription": None}
