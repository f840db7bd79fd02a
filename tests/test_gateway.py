"""ResourceGateway state machine: 402 until paid, then fulfil exactly once."""

import asyncio
from decimal import Decimal

import pytest

from trufflepay.buyer import PaymentRequest
from trufflepay.errors import GenerationFailed, LedgerUnavailable, ValidationError
from trufflepay.gateway import KeyedLock, ResourceGateway, asset_name, new_invoice_id
from trufflepay.models import InvoiceState
from trufflepay.store import JsonInvoiceStore

PAYLOAD = {"style": "watercolor", "description": "a corgi"}


async def pay(ledger_client, buyer, response):
    return await ledger_client.pay_invoice(PaymentRequest.from_body(response.body), buyer)


class TestPaymentRequired:
    async def test_first_request_registers_and_returns_402(self, gateway, ledger, store):
        response = await gateway.generate(PAYLOAD, invoice_id="abc-123", negotiated_price="3")

        assert response.status_code == 402
        assert response.body["invoiceId"] == "abc-123"
        assert response.body["amount"] == "3"
        assert response.body["ledgerReference"] == "0xRegistry"
        assert response.body["sellerAddress"] == "0xSeller"
        assert ledger.calls["createInvoice"] == 1

        record = await store.get("abc-123")
        assert record.registered and record.state == InvoiceState.CREATED

    async def test_repeat_unpaid_request_is_idempotent(self, gateway, ledger):
        first = await gateway.generate(PAYLOAD, invoice_id="abc-123", negotiated_price="3")
        second = await gateway.generate(PAYLOAD, invoice_id="abc-123", negotiated_price="9")

        assert first == second
        assert ledger.calls["createInvoice"] == 1

    async def test_default_amount_is_listing_price(self, gateway):
        response = await gateway.generate(PAYLOAD)

        assert response.body["amount"] == "10"
        assert response.body["invoiceId"].startswith("pp-")

    async def test_oversized_id_rejected_before_ledger(self, gateway, ledger):
        with pytest.raises(ValidationError):
            await gateway.generate(PAYLOAD, invoice_id="x" * 40)
        assert sum(ledger.calls.values()) == 0

    async def test_price_below_floor_rejected(self, gateway, ledger):
        with pytest.raises(ValidationError):
            await gateway.generate(PAYLOAD, negotiated_price="1.99")
        assert sum(ledger.calls.values()) == 0

    async def test_concurrent_fresh_requests_register_once(self, gateway, ledger):
        first, second = await asyncio.gather(
            gateway.generate(PAYLOAD, invoice_id="race-1"),
            gateway.generate(PAYLOAD, invoice_id="race-1"),
        )

        assert first == second
        assert first.status_code == 402
        assert ledger.calls["createInvoice"] == 1
        assert len(gateway._locks) == 0

    async def test_unreachable_ledger_blocks_new_invoices(self, gateway, ledger):
        ledger.available = False
        with pytest.raises(LedgerUnavailable):
            await gateway.generate(PAYLOAD, invoice_id="abc-123")
        assert ledger.calls["createInvoice"] == 0

    async def test_invoice_of_another_seller_is_refused(self, gateway, ledger, ledger_client):
        ledger.seller_address = "0xOther"
        await ledger_client.create_invoice("theirs-1", "0xToken", Decimal("3"))
        ledger.seller_address = "0xSeller"

        with pytest.raises(ValidationError, match="another seller"):
            await gateway.generate(PAYLOAD, invoice_id="theirs-1")

    async def test_price_beyond_ledger_precision_leaves_no_draft(self, gateway, ledger, store):
        with pytest.raises(ValidationError, match="fractional digits"):
            await gateway.generate(
                PAYLOAD, invoice_id="precise-1", negotiated_price="7.0000000000000000001"
            )
        assert await store.get("precise-1") is None
        assert ledger.calls["createInvoice"] == 0

        retry = await gateway.generate(PAYLOAD, invoice_id="precise-1", negotiated_price="7")

        assert retry.status_code == 402
        assert retry.body["amount"] == "7"


class TestFulfilment:
    async def test_paid_invoice_returns_asset_and_receipt(
        self, gateway, ledger_client, buyer, generator, assets, events
    ):
        response = await gateway.generate(PAYLOAD, invoice_id="abc-123", negotiated_price="3")
        await pay(ledger_client, buyer, response)
        assert (await ledger_client.get_invoice("abc-123")).paid

        done = await gateway.generate(PAYLOAD, invoice_id="abc-123")

        assert done.status_code == 200
        assert done.body["ok"] is True
        assert done.body["receipt"]["amount"] == "3"
        assert done.body["receipt"]["paidAt"]
        assert done.body["assetUrl"] == "http://seller.test/assets/asset_abc-123.svg"
        assert assets.exists("asset_abc-123.svg")
        assert generator.calls == 1
        for topic in ("invoice.created", "invoice.paid", "invoice.fulfilled"):
            assert topic in events.topics()

    async def test_fulfilled_invoice_is_never_regenerated(
        self, gateway, ledger_client, buyer, generator
    ):
        response = await gateway.generate(PAYLOAD, invoice_id="abc-123")
        await pay(ledger_client, buyer, response)

        first = await gateway.generate(PAYLOAD, invoice_id="abc-123")
        second = await gateway.generate(PAYLOAD, invoice_id="abc-123")

        assert first.body["assetUrl"] == second.body["assetUrl"]
        assert generator.calls == 1

    async def test_ledger_read_failure_fails_closed(
        self, gateway, ledger, ledger_client, buyer, generator
    ):
        response = await gateway.generate(PAYLOAD, invoice_id="abc-123")
        await pay(ledger_client, buyer, response)

        ledger.fail_next_reads = 1
        blocked = await gateway.generate(PAYLOAD, invoice_id="abc-123")

        assert blocked.status_code == 402
        assert generator.calls == 0

    async def test_ledger_is_reread_even_when_cache_says_paid(
        self, gateway, ledger, ledger_client, buyer
    ):
        response = await gateway.generate(PAYLOAD, invoice_id="abc-123")
        await pay(ledger_client, buyer, response)
        await gateway.generate(PAYLOAD, invoice_id="abc-123")
        reads = ledger.calls["invoices"]

        await gateway.generate(PAYLOAD, invoice_id="abc-123")

        assert ledger.calls["invoices"] == reads + 1

    async def test_generation_failure_allows_free_retry(
        self, gateway, ledger, ledger_client, buyer, generator, store, events
    ):
        generator.fail_times = 1
        response = await gateway.generate(PAYLOAD, invoice_id="abc-123")
        await pay(ledger_client, buyer, response)

        with pytest.raises(GenerationFailed):
            await gateway.generate(PAYLOAD, invoice_id="abc-123")
        assert (await store.get("abc-123")).state == InvoiceState.PAID
        assert "generation.failed" in events.topics()

        retry = await gateway.generate(PAYLOAD, invoice_id="abc-123")

        assert retry.status_code == 200
        assert generator.calls == 2
        assert ledger.calls["payInvoice"] == 1

    async def test_generation_timeout_maps_to_generation_failed(
        self, gateway, ledger_client, buyer, generator, mocker
    ):
        async def stall(invoice, payload):
            await asyncio.sleep(5)

        mocker.patch.object(generator, "generate", side_effect=stall)
        gateway.generation_timeout = 0.01
        response = await gateway.generate(PAYLOAD, invoice_id="abc-123")
        await pay(ledger_client, buyer, response)

        with pytest.raises(GenerationFailed, match="timed out"):
            await gateway.generate(PAYLOAD, invoice_id="abc-123")

    @pytest.mark.parametrize("invoice_id", ["order:42", "abc 1", "caf\u00e9", "a.b"])
    async def test_any_valid_invoice_id_can_be_fulfilled(
        self, gateway, ledger_client, buyer, assets, invoice_id
    ):
        response = await gateway.generate(PAYLOAD, invoice_id=invoice_id)
        await pay(ledger_client, buyer, response)

        done = await gateway.generate(PAYLOAD, invoice_id=invoice_id)

        assert done.status_code == 200
        name = done.body["assetUrl"].rsplit("/", 1)[-1]
        assert name == asset_name(invoice_id, "svg")
        assert assets.exists(name)

    def test_asset_names_do_not_collide(self):
        names = {asset_name(i, "svg") for i in ["a-b", "a.b", "a:b", "a b", "612e62"]}
        assert len(names) == 5


class TestRecovery:
    async def test_lost_local_record_is_rebuilt_from_ledger(
        self, gateway, ledger_client, buyer, store
    ):
        await ledger_client.create_invoice("lost-1", "0xToken", Decimal("3"))
        await ledger_client.pay_invoice(
            PaymentRequest("lost-1", Decimal("3"), "0xToken", "0xRegistry", "0xSeller"), buyer
        )

        response = await gateway.generate(PAYLOAD, invoice_id="lost-1")

        assert response.status_code == 200
        assert response.body["receipt"]["amount"] == "3"
        assert (await store.get("lost-1")).metadata == {"recovered": True}

    async def test_corrupt_json_store_recovers_from_ledger(
        self, tmp_path, listing, ledger_client, buyer, generator, assets
    ):
        path = tmp_path / "invoices.json"

        def make_gateway():
            return ResourceGateway(
                listing=listing,
                ledger=ledger_client,
                store=JsonInvoiceStore(path),
                generator=generator,
                assets=assets,
                seller_id="petpainter",
                invoice_prefix="pp",
            )

        response = await make_gateway().generate(PAYLOAD, invoice_id="abc-123")
        await pay(ledger_client, buyer, response)
        path.write_text("{truncated")

        done = await make_gateway().generate(PAYLOAD, invoice_id="abc-123")

        assert done.status_code == 200
        assert done.body["receipt"]["amount"] == "10"


class TestHelpers:
    def test_generated_ids_fit_in_bytes32(self):
        invoice_id = new_invoice_id("a-very-long-seller-prefix-indeed")
        assert len(invoice_id.encode()) <= 31
        assert invoice_id.count("-") >= 2

    def test_generated_ids_are_unique(self):
        assert len({new_invoice_id("pp") for _ in range(200)}) == 200

    def test_quote_hides_floor(self, gateway):
        quote = gateway.quote()

        assert quote["price"] == "10"
        assert quote["ledgerReference"] == "0xRegistry"
        assert "2" not in [str(v) for v in quote.values()]
        assert not any("floor" in key.lower() for key in quote)

    async def test_keyed_lock_serialises_same_key(self):
        locks = KeyedLock()
        order = []

        async def worker(name):
            async with locks.hold("k"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
        assert len(locks) == 0
