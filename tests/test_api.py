"""HTTP surface of the seller gateway."""

from decimal import Decimal

import pytest

from trufflepay.buyer import PaymentRequest


class TestQuoteAndListings:
    async def test_quote_hides_floor(self, client):
        response = await client.get("/quote")

        assert response.status_code == 200
        body = response.json()
        assert body["price"] == "10"
        assert "2" not in body.values()
        assert "floor" not in str(body).lower()

    async def test_listings_are_public_views(self, client):
        response = await client.get("/listings")

        assert response.status_code == 200
        (entry,) = response.json()
        assert entry["id"] == "petpainter"
        assert "floor_price" not in entry and "minPrice" not in entry


class TestGenerate:
    async def test_unpaid_request_returns_402(self, client):
        response = await client.post(
            "/generate", json={"payload": {"style": "watercolor"}, "invoiceId": "abc-123"}
        )

        assert response.status_code == 402
        body = response.json()
        assert body["invoiceId"] == "abc-123"
        assert body["amount"] == "10"
        assert body["ledgerReference"] == "0xRegistry"

    async def test_request_id_is_echoed(self, client):
        response = await client.post(
            "/generate", json={"payload": {}}, headers={"X-Request-ID": "req-42"}
        )
        assert response.headers["X-Request-ID"] == "req-42"

    async def test_request_id_is_generated_when_absent(self, client):
        response = await client.get("/healthz")
        assert response.headers["X-Request-ID"]

    async def test_overlong_invoice_id_is_rejected(self, client, ledger):
        response = await client.post(
            "/generate", json={"payload": {}, "invoiceId": "x" * 40}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"
        assert ledger.calls["createInvoice"] == 0

    async def test_malformed_body_is_rejected(self, client):
        response = await client.post("/generate", json={"payload": "not an object"})

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    async def test_paid_flow_serves_asset(self, client, services, buyer):
        first = await client.post(
            "/generate", json={"payload": {}, "invoiceId": "abc-123", "negotiatedPrice": "4"}
        )
        await services.ledger.pay_invoice(PaymentRequest.from_body(first.json()), buyer)

        second = await client.post("/generate", json={"payload": {}, "invoiceId": "abc-123"})

        assert second.status_code == 200
        body = second.json()
        assert body["ok"] is True
        assert body["receipt"]["amount"] == "4"

        name = body["assetUrl"].rsplit("/", 1)[-1]
        asset = await client.get(f"/assets/{name}")
        assert asset.status_code == 200
        assert asset.content.startswith(b"<svg")

        record = await client.get("/invoices/abc-123")
        assert record.json()["state"] == "FULFILLED"

        activity = await client.get("/activity", params={"limit": 20})
        topics = [event["topic"] for event in activity.json()]
        assert "invoice.created" in topics
        assert "invoice.fulfilled" in topics

    async def test_price_beyond_ledger_precision_is_400(self, client, ledger):
        response = await client.post(
            "/generate",
            json={
                "payload": {},
                "invoiceId": "abc-123",
                "negotiatedPrice": "7.0000000000000000001",
            },
        )

        assert response.status_code == 400
        assert ledger.calls["createInvoice"] == 0


class TestBalance:
    async def test_seller_balance_by_default(self, client):
        response = await client.get("/balance")

        assert response.status_code == 200
        assert response.json() == {"address": "0xSeller", "token": "0xToken", "balance": "0"}

    async def test_balance_of_address(self, client, buyer):
        response = await client.get("/balance", params={"address": buyer.address})
        assert response.json()["balance"] == "100"

    async def test_unreachable_ledger_is_503(self, client, ledger):
        ledger.available = False

        response = await client.get("/balance")

        assert response.status_code == 503
        assert response.json()["error"] == "LedgerUnavailable"


class TestNegotiate:
    async def test_negotiates_registered_listing(self, client):
        response = await client.post(
            "/negotiate", json={"listing": "petpainter", "buyerBudget": "7"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["agreedPrice"] == "7.00"
        assert body["rounds"] == 3
        assert body["settlement"] == "seller_accepted"

    async def test_budget_read_from_requirements(self, client):
        response = await client.post(
            "/negotiate",
            json={"listing": "petpainter", "requirements": "my budget is 6 tokens"},
        )

        assert response.status_code == 200
        assert Decimal(response.json()["agreedPrice"]) == Decimal("6")

    async def test_inline_listing(self, client):
        response = await client.post(
            "/negotiate",
            json={
                "listing": {"id": "x", "price": "10", "minPrice": "5", "token": "ENC"},
                "buyerBudget": "7",
            },
        )

        assert response.status_code == 200
        assert response.json()["agreedPrice"] == "7.00"

    async def test_budget_below_floor_fails(self, client):
        response = await client.post(
            "/negotiate", json={"listing": "petpainter", "buyerBudget": "1"}
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "NegotiationFailed"

    async def test_unknown_listing(self, client):
        response = await client.post("/negotiate", json={"listing": "nobody"})
        assert response.status_code == 400


class TestInvoicesAndAssets:
    async def test_unknown_invoice_is_404(self, client):
        response = await client.get("/invoices/never-seen")
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"
        assert response.json()["state"] == "UNKNOWN"

    async def test_missing_asset_is_404(self, client):
        response = await client.get("/assets/asset_missing.svg")
        assert response.status_code == 404

    async def test_unsafe_asset_name_is_rejected(self, client):
        response = await client.get("/assets/.hidden")
        assert response.status_code == 400


class TestHealthEndpoints:
    async def test_liveness(self, client):
        response = await client.get("/healthz")
        assert response.json() == {"status": "ok"}

    async def test_ready_when_ledger_reachable(self, client):
        response = await client.get("/readyz")

        assert response.status_code == 200
        assert response.json() == {"status": "ready", "dependencies": {"ledger": "ok"}}

    async def test_not_ready_when_ledger_down(self, client, ledger):
        ledger.available = False

        response = await client.get("/readyz")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
        assert response.json()["dependencies"]["ledger"] == "error"

    @pytest.mark.parametrize("available,expected", [(True, "healthy"), (False, "degraded")])
    async def test_detailed_health(self, client, ledger, available, expected):
        ledger.available = available

        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == expected
        assert response.json()["checks"]["gateway"] == "ok"
