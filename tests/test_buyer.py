"""BuyerAgent orchestration: negotiate, pay, fetch."""

from decimal import Decimal

import httpx
import pytest

from trufflepay.api import create_app
from trufflepay.buyer import (
    BuyerAgent,
    GatewayClient,
    PaymentRequest,
    RemoteNegotiator,
    listing_from_quote,
)
from trufflepay.errors import PaymentNotRecognized, ValidationError
from trufflepay.gateway import GatewayResponse
from trufflepay.ledger import LedgerClient

PAYLOAD = {"style": "watercolor"}


class StubbornClient:
    """Keeps answering 402 after payment, as a misbehaving seller would."""

    def __init__(self, gateway):
        self.gateway = gateway
        self.first: GatewayResponse | None = None

    async def generate(self, payload, invoice_id=None, negotiated_price=None):
        if self.first is None:
            self.first = await self.gateway.generate(
                payload, invoice_id=invoice_id, negotiated_price=negotiated_price
            )
        return self.first


class ListPriceClient:
    """Ignores the negotiated price and invoices the full listing price."""

    def __init__(self, gateway):
        self.gateway = gateway

    async def generate(self, payload, invoice_id=None, negotiated_price=None):
        return await self.gateway.generate(payload, invoice_id=invoice_id)


@pytest.fixture
def agent(engine, ledger_client, buyer, gateway, events):
    return BuyerAgent(
        engine=engine,
        ledger=ledger_client,
        signer=buyer,
        client_for=lambda listing: gateway,
        retry_delay=0.01,
        sink=events,
    )


class TestBuyerAgent:
    async def test_purchase_end_to_end(self, agent, listing, ledger):
        result = await agent.purchase(listing, PAYLOAD, buyer_budget=Decimal("7"))

        assert result.negotiation.agreed_price == Decimal("7.00")
        assert result.receipt["amount"] == "7"
        assert result.asset_url.endswith(f"asset_{result.invoice_id}.svg")
        assert result.payment.tx_hash
        assert ledger.calls["payInvoice"] == 1

    async def test_already_fulfilled_invoice_short_circuits(
        self, agent, listing, ledger, engine, mocker
    ):
        first = await agent.purchase(listing, PAYLOAD, buyer_budget=Decimal("7"))
        negotiate = mocker.spy(engine, "negotiate")

        again = await agent.purchase(listing, PAYLOAD, invoice_id=first.invoice_id)

        assert again.asset_url == first.asset_url
        assert again.negotiation is None and again.payment is None
        assert negotiate.call_count == 0
        assert ledger.calls["payInvoice"] == 1

    async def test_supplied_unpaid_invoice_is_paid_without_negotiating(
        self, agent, listing, gateway, ledger
    ):
        await gateway.generate(PAYLOAD, invoice_id="abc-123", negotiated_price="3")

        result = await agent.purchase(listing, PAYLOAD, invoice_id="abc-123")

        assert result.negotiation is None
        assert result.receipt["amount"] == "3"
        assert ledger.calls["payInvoice"] == 1

    async def test_second_402_after_payment_raises(
        self, engine, ledger_client, buyer, gateway, listing, ledger
    ):
        agent = BuyerAgent(engine, ledger_client, buyer, lambda _: StubbornClient(gateway))

        with pytest.raises(PaymentNotRecognized) as exc:
            await agent.purchase(listing, PAYLOAD, buyer_budget=Decimal("7"))

        assert exc.value.tx_hash
        assert ledger.calls["payInvoice"] == 1

    async def test_invoice_above_negotiated_price_is_not_paid(
        self, engine, ledger_client, buyer, gateway, listing, ledger
    ):
        agent = BuyerAgent(engine, ledger_client, buyer, lambda _: ListPriceClient(gateway))

        with pytest.raises(ValidationError, match="exceeds the negotiated"):
            await agent.purchase(listing, PAYLOAD, buyer_budget=Decimal("7"))
        assert ledger.calls["payInvoice"] == 0

    async def test_transient_generation_failure_is_retried_without_repaying(
        self, agent, listing, generator, ledger
    ):
        generator.fail_times = 1

        result = await agent.purchase(listing, PAYLOAD, buyer_budget=Decimal("7"))

        assert result.asset_url
        assert generator.calls == 2
        assert ledger.calls["payInvoice"] == 1

    async def test_fetch_retries_back_off(self, agent, listing, generator, mocker):
        generator.fail_times = 2
        sleep = mocker.patch("trufflepay.buyer.asyncio.sleep", mocker.AsyncMock())

        await agent.purchase(listing, PAYLOAD, buyer_budget=Decimal("7"))

        assert [c.args[0] for c in sleep.await_args_list] == [0.01, 0.02]

    async def test_slow_payment_finality_still_fetches_the_asset(
        self, engine, ledger, buyer, gateway, listing
    ):
        ledger.finality_delay = 0.2
        impatient = LedgerClient(ledger, tx_timeout=0.05, read_timeout=1.0)
        agent = BuyerAgent(engine, impatient, buyer, lambda _: gateway)

        result = await agent.purchase(listing, PAYLOAD, buyer_budget=Decimal("7"))

        assert result.asset_url
        assert ledger.calls["payInvoice"] == 1


class TestGatewayClient:
    @pytest.fixture
    async def http(self, services):
        transport = httpx.ASGITransport(app=create_app(services=services))
        async with httpx.AsyncClient(transport=transport) as client:
            yield GatewayClient("http://seller.test", client=client)

    async def test_purchase_over_http(self, http, services, buyer, listing):
        agent = BuyerAgent(services.engine, services.ledger, buyer, lambda _: http)

        result = await agent.purchase(listing, PAYLOAD, buyer_budget=Decimal("7"))

        assert result.receipt["amount"] == "7"
        assert result.asset_url.startswith("http://seller.test/assets/")

    async def test_quote(self, http):
        quote = await http.quote()
        assert quote["sellerId"] == "petpainter"

    async def test_negotiation_runs_on_the_seller(self, http, services, buyer):
        listing = listing_from_quote(await http.quote())
        agent = BuyerAgent(RemoteNegotiator(http), services.ledger, buyer, lambda _: http)

        result = await agent.purchase(listing, PAYLOAD, buyer_budget=Decimal("7"))

        assert result.negotiation.agreed_price == Decimal("7.00")
        assert result.negotiation.settlement == "seller_accepted"
        assert result.receipt["amount"] == "7"

    async def test_quote_gives_no_floor_to_the_buyer(self, http):
        listing = listing_from_quote(await http.quote())

        assert listing.id == "petpainter"
        assert listing.floor_price == listing.listing_price == Decimal("10")

    async def test_error_payload_becomes_protocol_error(self, http):
        with pytest.raises(ValidationError):
            await http.generate(PAYLOAD, invoice_id="x" * 40)

    def test_payment_request_requires_fields(self):
        with pytest.raises(ValidationError, match="missing"):
            PaymentRequest.from_body({"invoiceId": "abc", "amount": "3"})
