"""Pytest configuration and shared fixtures."""

from decimal import Decimal

import httpx
import pytest

from trufflepay.api import build_services, create_app
from trufflepay.config import GatewaySettings, Settings, StoreSettings
from trufflepay.events import MemoryEventSink
from trufflepay.gateway import LocalAssetStore, ResourceGateway, StaticContentGenerator
from trufflepay.ledger import InMemoryLedger, LedgerClient, LocalSigner, to_base_units
from trufflepay.listings import ListingRegistry
from trufflepay.models import SellerListing
from trufflepay.negotiation import NegotiationEngine, ScheduleBuyerPolicy, ScheduleSellerPolicy
from trufflepay.store import MemoryInvoiceStore

TOKEN = "0xToken"


@pytest.fixture
def listing():
    return SellerListing(
        id="petpainter",
        listing_price=Decimal("10"),
        floor_price=Decimal("2"),
        token=TOKEN,
        name="PetPainter",
        style="watercolor",
        description="Watercolor pet portraits",
        capabilities=("watercolor", "pet", "portrait"),
    )


@pytest.fixture
def ledger():
    return InMemoryLedger(seller_address="0xSeller", reference="0xRegistry")


@pytest.fixture
def events():
    return MemoryEventSink()


@pytest.fixture
def ledger_client(ledger, events):
    return LedgerClient(ledger, tx_timeout=1.0, read_timeout=1.0, sink=events)


@pytest.fixture
def buyer(ledger):
    """Buyer wallet holding 100 tokens."""
    signer = LocalSigner("0xBuyer")
    ledger.mint(TOKEN, signer.address, to_base_units(Decimal("100")))
    return signer


@pytest.fixture
def store():
    return MemoryInvoiceStore()


@pytest.fixture
def generator():
    return StaticContentGenerator()


@pytest.fixture
def assets(tmp_path):
    return LocalAssetStore(tmp_path / "assets", "http://seller.test")


@pytest.fixture
def gateway(listing, ledger_client, store, generator, assets, events):
    return ResourceGateway(
        listing=listing,
        ledger=ledger_client,
        store=store,
        generator=generator,
        assets=assets,
        seller_id="petpainter",
        invoice_prefix="pp",
        generation_timeout=1.0,
        sink=events,
    )


@pytest.fixture
def engine(events):
    return NegotiationEngine(
        buyer=ScheduleBuyerPolicy([0.65, 0.80, 0.90]),
        seller=ScheduleSellerPolicy([0.90, 0.85, 0.0]),
        max_rounds=3,
        sink=events,
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        store=StoreSettings(backend="memory"),
        gateway=GatewaySettings(
            listing_id="petpainter",
            assets_dir=str(tmp_path / "assets"),
            public_base_url="http://seller.test",
        ),
    )


@pytest.fixture
def services(settings, listing, ledger, store, generator):
    registry = ListingRegistry([listing])
    return build_services(
        settings, ledger=ledger, store=store, generator=generator, registry=registry
    )


@pytest.fixture
async def client(services):
    app = create_app(services=services)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://seller.test") as c:
        yield c
