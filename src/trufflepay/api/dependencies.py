"""Wiring of gateway services from settings."""

from dataclasses import dataclass, replace

import structlog
from eth_account import Account
from eth_account.signers.local import LocalAccount

from trufflepay.config import Settings
from trufflepay.errors import ValidationError
from trufflepay.events import EventSink, FanOutEventSink, LoggingEventSink, MemoryEventSink
from trufflepay.gateway import (
    ContentGenerator,
    HttpContentGenerator,
    LocalAssetStore,
    ResourceGateway,
    StaticContentGenerator,
)
from trufflepay.ledger import InMemoryLedger, LedgerClient, SettlementLedger
from trufflepay.listings import ListingRegistry
from trufflepay.negotiation import NegotiationEngine, build_engine
from trufflepay.store import InvoiceStore, build_store

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    registry: ListingRegistry
    ledger: LedgerClient
    store: InvoiceStore
    assets: LocalAssetStore
    gateway: ResourceGateway
    engine: NegotiationEngine
    events: MemoryEventSink


def build_ledger(settings: Settings) -> SettlementLedger:
    cfg = settings.ledger
    if cfg.provider == "evm":
        from trufflepay.ledger.evm_provider import EvmLedger

        return EvmLedger(
            rpc_url=cfg.rpc_url,
            registry_address=cfg.registry_address,
            seller_private_key=cfg.seller_private_key.get_secret_value() or None,
            chain_id=cfg.chain_id,
            request_timeout=cfg.read_timeout_seconds,
        )
    return InMemoryLedger(reference=cfg.registry_address or "0xRegistry")


def build_ledger_client(
    settings: Settings,
    ledger: SettlementLedger | None = None,
    sink: EventSink | None = None,
) -> LedgerClient:
    return LedgerClient(
        ledger or build_ledger(settings),
        decimals=settings.ledger.decimals,
        tx_timeout=settings.ledger.tx_timeout_seconds,
        read_timeout=settings.ledger.read_timeout_seconds,
        sink=sink,
    )


def build_buyer_signer(settings: Settings) -> LocalAccount:
    """Buyer wallet from ``TRUFFLE_LEDGER__BUYER_PRIVATE_KEY``."""
    key = settings.ledger.buyer_private_key.get_secret_value()
    if not key:
        raise ValidationError("TRUFFLE_LEDGER__BUYER_PRIVATE_KEY is required to pay invoices")
    return Account.from_key(key)


def build_generator(settings: Settings) -> ContentGenerator:
    if settings.gateway.generator_url:
        return HttpContentGenerator(
            settings.gateway.generator_url,
            timeout=settings.gateway.generation_timeout_seconds,
        )
    return StaticContentGenerator()


def build_services(
    settings: Settings,
    ledger: SettlementLedger | None = None,
    store: InvoiceStore | None = None,
    generator: ContentGenerator | None = None,
    registry: ListingRegistry | None = None,
) -> Services:
    events = MemoryEventSink()
    sink = FanOutEventSink(events, LoggingEventSink())

    registry = registry or ListingRegistry.from_file(settings.gateway.listings_path)
    listing = registry.get(settings.gateway.listing_id)
    if settings.ledger.token_address:
        listing = replace(listing, token=settings.ledger.token_address)

    client = build_ledger_client(settings, ledger, sink)
    store = store or build_store(settings.store)
    assets = LocalAssetStore(settings.gateway.assets_dir, settings.gateway.public_base_url)

    gateway = ResourceGateway(
        listing=listing,
        ledger=client,
        store=store,
        generator=generator or build_generator(settings),
        assets=assets,
        seller_id=settings.gateway.seller_id,
        invoice_prefix=settings.gateway.invoice_prefix,
        generation_timeout=settings.gateway.generation_timeout_seconds,
        sink=sink,
    )
    logger.info(
        "services_built",
        seller_id=settings.gateway.seller_id,
        listing_id=listing.id,
        ledger=settings.ledger.provider,
        store=settings.store.backend,
    )
    return Services(
        settings=settings,
        registry=registry,
        ledger=client,
        store=store,
        assets=assets,
        gateway=gateway,
        engine=build_engine(settings, sink=sink),
        events=events,
    )
