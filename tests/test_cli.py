"""Buyer and withdrawal entry points, run against the in-memory ledger."""

from decimal import Decimal

import httpx
import pytest
from pydantic import SecretStr

from trufflepay.api import create_app
from trufflepay.api.dependencies import build_buyer_signer
from trufflepay.buyer import GatewayClient
from trufflepay.cli import run_purchase, run_withdraw
from trufflepay.config import LedgerSettings, Settings
from trufflepay.errors import ValidationError

TEST_KEY = "0x" + "11" * 32


@pytest.fixture
async def http(services):
    transport = httpx.ASGITransport(app=create_app(services=services))
    async with httpx.AsyncClient(transport=transport) as client:
        yield GatewayClient("http://seller.test", client=client)


class TestBuyerSigner:
    def test_missing_key_is_rejected(self):
        with pytest.raises(ValidationError, match="BUYER_PRIVATE_KEY"):
            build_buyer_signer(Settings(ledger=LedgerSettings()))

    def test_key_yields_wallet_address(self):
        settings = Settings(ledger=LedgerSettings(buyer_private_key=SecretStr(TEST_KEY)))

        signer = build_buyer_signer(settings)

        assert signer.address.startswith("0x") and len(signer.address) == 42


class TestRunPurchase:
    async def test_budget_comes_from_requirements(self, http, services, buyer):
        result = await run_purchase(
            http, services.ledger, buyer, requirements="a corgi, budget 7"
        )

        assert result.negotiation.agreed_price == Decimal("7.00")
        assert result.receipt["amount"] == "7"

    async def test_resume_existing_invoice(self, http, services, buyer, ledger):
        first = await run_purchase(http, services.ledger, buyer, budget=Decimal("7"))

        again = await run_purchase(http, services.ledger, buyer, invoice_id=first.invoice_id)

        assert again.asset_url == first.asset_url
        assert again.negotiation is None
        assert ledger.calls["payInvoice"] == 1

    async def test_withdraw_after_purchase(self, http, services, buyer):
        await run_purchase(http, services.ledger, buyer, budget=Decimal("7"))

        summary = await run_withdraw(services.store, services.ledger)

        assert summary.count == 1
        assert summary.total == Decimal("7")
