"""
Run a full buyer -> gateway -> ledger purchase in one process.

Uses the in-memory ledger, so no chain or keys are needed:

    python scripts/simulate_purchase.py --requirements "watercolor of my dog, budget 2.5"
"""

import argparse
import asyncio
import json
import tempfile
from decimal import Decimal

from trufflepay.api.dependencies import build_services
from trufflepay.buyer import BuyerAgent
from trufflepay.config import GatewaySettings, Settings, StoreSettings
from trufflepay.errors import TrufflePayError
from trufflepay.gateway import withdraw_earnings
from trufflepay.ledger import InMemoryLedger, LocalSigner, to_base_units
from trufflepay.listings import ListingRegistry
from trufflepay.logging_config import configure_logging
from trufflepay.negotiation import extract_budget

BUYER = LocalSigner("0xBuyer")


async def simulate(requirements: str, registry_path: str, buyer_funds: str) -> None:
    registry = ListingRegistry.from_file(registry_path)
    listing = registry.select(requirements, extract_budget(requirements))
    if listing is None:
        print(f"❌ No listings in {registry_path}")
        return
    budget = extract_budget(requirements, default=listing.listing_price)

    ledger = InMemoryLedger()
    settings = Settings(
        store=StoreSettings(backend="memory"),
        gateway=GatewaySettings(
            seller_id=listing.id,
            listing_id=listing.id,
            invoice_prefix=listing.id[:8],
            assets_dir=tempfile.mkdtemp(prefix="trufflepay-assets-"),
        ),
    )
    services = build_services(settings, ledger=ledger, registry=registry)
    funds = to_base_units(Decimal(buyer_funds), settings.ledger.decimals)
    ledger.mint(listing.token, BUYER.address, funds)

    print(f"\n--- 🤖 PURCHASE: {listing.name} ({listing.style}) ---")
    print(f"Listed: {listing.listing_price} {listing.token} | Budget: {budget}")

    agent = BuyerAgent(
        engine=services.engine,
        ledger=services.ledger,
        signer=BUYER,
        client_for=lambda _: services.gateway,
        sink=services.events,
    )
    try:
        result = await agent.purchase(listing, {"style": listing.style}, buyer_budget=budget)
    except TrufflePayError as e:
        print(f"⛔ {e.code}: {e.message}")
        return

    for offer in result.negotiation.history:
        mark = "✅" if offer.accepted else "💬"
        print(f"{mark} round {offer.round} {offer.actor.value:>6}: {offer.price}  {offer.rationale}")
    print(f"🤝 Agreed: {result.negotiation.agreed_price} ({result.negotiation.settlement})")
    print(f"💳 Paid invoice {result.invoice_id}, tx {result.payment.tx_hash}")
    print(f"🖼️  Asset: {result.asset_url}")

    summary = await withdraw_earnings(services.store, services.ledger, services.events)
    print(f"💰 Seller withdrew {summary.count} invoice(s), total {summary.total}")

    print("\nActivity:")
    print(json.dumps([e.to_dict() for e in services.events.recent(100)], indent=2))


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--requirements", default="watercolor portrait of my dog, budget 2.5")
    parser.add_argument("--registry", default="data/registry.json")
    parser.add_argument("--buyer-funds", default="100")
    parser.add_argument("--log-level", default="warning")
    args = parser.parse_args()

    configure_logging(args.log_level, fmt="console")
    asyncio.run(simulate(args.requirements, args.registry, args.buyer_funds))


if __name__ == "__main__":
    main()
