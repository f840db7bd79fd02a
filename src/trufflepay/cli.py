"""
Command-line entry points against a live ledger.

    trufflepay-buy --gateway http://localhost:3031 --requirements "my dog, budget 2.5"
    trufflepay-withdraw

Both read the same ``TRUFFLE_*`` settings as the gateway; the buyer also needs
``TRUFFLE_LEDGER__BUYER_PRIVATE_KEY``.
"""

import argparse
import asyncio
import json
import sys
from decimal import Decimal

from trufflepay.api.dependencies import build_buyer_signer, build_ledger_client
from trufflepay.buyer import (
    BuyerAgent,
    GatewayClient,
    PurchaseResult,
    RemoteNegotiator,
    listing_from_quote,
)
from trufflepay.config import Settings, get_settings
from trufflepay.errors import TrufflePayError
from trufflepay.gateway import WithdrawalSummary, withdraw_earnings
from trufflepay.ledger import LedgerClient, Signer, parse_amount
from trufflepay.logging_config import configure_logging
from trufflepay.negotiation import extract_budget
from trufflepay.store import InvoiceStore, build_store


async def run_purchase(
    client: GatewayClient,
    ledger: LedgerClient,
    signer: Signer,
    requirements: str = "",
    budget: Decimal | None = None,
    invoice_id: str | None = None,
) -> PurchaseResult:
    """Quote, negotiate on the seller's gateway, pay from ``signer`` and fetch."""
    listing = listing_from_quote(await client.quote())
    if budget is None and not invoice_id:
        budget = extract_budget(requirements, default=listing.listing_price)

    agent = BuyerAgent(
        engine=RemoteNegotiator(client),
        ledger=ledger,
        signer=signer,
        client_for=lambda _: client,
    )
    payload = {"requirements": requirements, "style": listing.style}
    return await agent.purchase(listing, payload, buyer_budget=budget, invoice_id=invoice_id)


async def run_withdraw(store: InvoiceStore, ledger: LedgerClient) -> WithdrawalSummary:
    return await withdraw_earnings(store, ledger)


async def _buy(args: argparse.Namespace, settings: Settings) -> None:
    signer = build_buyer_signer(settings)
    ledger = build_ledger_client(settings)
    client = GatewayClient(args.gateway)

    quote = await client.quote()
    before = await ledger.balance(quote["token"], signer.address)
    print(f"🤖 Buyer {signer.address} | balance {before} | seller {quote['sellerId']}")

    budget = parse_amount(args.budget) if args.budget else None
    result = await run_purchase(
        client, ledger, signer, args.requirements, budget, args.invoice_id
    )
    if result.negotiation:
        print(f"🤝 Agreed {result.negotiation.agreed_price} ({result.negotiation.settlement})")
    if result.payment:
        print(f"💳 Paid invoice {result.invoice_id}, tx {result.payment.tx_hash}")
    print(f"🖼️  Asset: {result.asset_url}")
    print(json.dumps(result.to_dict(), indent=2))


async def _withdraw(settings: Settings) -> None:
    summary = await run_withdraw(build_store(settings.store), build_ledger_client(settings))
    print(f"💰 Withdrew {summary.count} invoice(s), total {summary.total}")
    print(json.dumps(summary.to_dict(), indent=2))


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except TrufflePayError as e:
        print(f"⛔ {e.code}: {e.message}", file=sys.stderr)
        raise SystemExit(1) from e


def buy() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Buy an asset from a pay-gated seller")
    parser.add_argument("--gateway", default=settings.gateway.public_base_url)
    parser.add_argument("--requirements", default="")
    parser.add_argument("--budget", help="defaults to the budget in --requirements")
    parser.add_argument("--invoice-id", help="resume or fetch an existing invoice")
    parser.add_argument("--log-level", default="warning")
    args = parser.parse_args()

    configure_logging(args.log_level, fmt="console")
    _run(_buy(args, settings))


def withdraw() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Withdraw paid invoices to the seller wallet")
    parser.add_argument("--log-level", default="info")
    args = parser.parse_args()

    configure_logging(args.log_level, fmt="console")
    _run(_withdraw(settings))
