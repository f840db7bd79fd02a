"""
Pay-gated resource gateway.

Per-invoice state machine::

    UNKNOWN -> CREATED -> PAID -> FULFILLED

Every request re-reads the ledger for paid status. The local store only
saves redundant ledger writes (registration) and remembers fulfillment, so
the content generator runs at most once per successfully fulfilled invoice.
"""

import asyncio
import secrets
import string
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any

import structlog

from trufflepay.errors import GenerationFailed, LedgerUnavailable, ValidationError
from trufflepay.events import Event, EventSink, NullEventSink
from trufflepay.ledger import (
    LedgerClient,
    LedgerInvoice,
    MAX_INVOICE_ID_BYTES,
    format_amount,
    parse_amount,
    to_base_units,
    validate_invoice_id,
)
from trufflepay.models import Invoice, InvoiceState, SellerListing
from trufflepay.store import InvoiceStore
from trufflepay.telemetry import tracer

from .assets import LocalAssetStore, asset_name
from .generator import ContentGenerator
from .locks import KeyedLock

logger = structlog.get_logger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
_CAS_ATTEMPTS = 3


def _base36(value: int) -> str:
    digits = []
    while True:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
        if value == 0:
            return "".join(reversed(digits))


def new_invoice_id(prefix: str) -> str:
    """``<prefix>-<base36 ms timestamp>-<5 random base36>``, at most 31 bytes."""
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    room = MAX_INVOICE_ID_BYTES - len(stamp) - len(suffix) - 2
    prefix = prefix.encode()[:room].decode(errors="ignore") or "inv"
    return f"{prefix}-{stamp}-{suffix}"


@dataclass(frozen=True)
class GatewayResponse:
    """Protocol-level outcome: 402 with invoice details, or 200 with the asset."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def payment_required(self) -> bool:
        return self.status_code == 402


class ResourceGateway:
    def __init__(
        self,
        listing: SellerListing,
        ledger: LedgerClient,
        store: InvoiceStore,
        generator: ContentGenerator,
        assets: LocalAssetStore,
        seller_id: str,
        invoice_prefix: str = "inv",
        generation_timeout: float = 120.0,
        sink: EventSink | None = None,
    ):
        self.listing = listing
        self.ledger = ledger
        self.store = store
        self.generator = generator
        self.assets = assets
        self.seller_id = seller_id
        self.invoice_prefix = invoice_prefix
        self.generation_timeout = generation_timeout
        self.sink = sink or NullEventSink()
        self._locks = KeyedLock()

    def quote(self) -> dict[str, Any]:
        return {
            "sellerId": self.seller_id,
            "listingId": self.listing.id,
            "name": self.listing.name,
            "style": self.listing.style,
            "price": format_amount(self.listing.listing_price),
            "token": self.listing.token,
            "ledgerReference": self.ledger.reference,
            "description": self.listing.description,
            "capabilities": list(self.listing.capabilities),
        }

    async def generate(
        self,
        payload: dict[str, Any],
        invoice_id: str | None = None,
        negotiated_price: Decimal | str | None = None,
        sink: EventSink | None = None,
    ) -> GatewayResponse:
        """
        Handle one pay-gated request.

        Returns a 402 response until the ledger reports the invoice paid, then
        the fulfilled asset. Raises ``ValidationError`` before any ledger call
        when the id or price is malformed.
        """
        sink = sink or self.sink
        if not isinstance(payload, dict):
            raise ValidationError("payload must be a JSON object")

        invoice_id = validate_invoice_id(invoice_id or new_invoice_id(self.invoice_prefix))
        amount = self._resolve_amount(negotiated_price)
        log = logger.bind(invoice_id=invoice_id)

        with tracer.start_as_current_span("gateway.generate") as span:
            span.set_attribute("invoice.id", invoice_id)
            async with self._locks.hold(invoice_id):
                response = await self._handle(invoice_id, payload, amount, sink, log)
            span.set_attribute("http.response.status_code", response.status_code)
            return response

    async def _handle(
        self,
        invoice_id: str,
        payload: dict[str, Any],
        amount: Decimal,
        sink: EventSink,
        log: Any,
    ) -> GatewayResponse:
        record = await self.store.get(invoice_id)
        ledger_state = await self._read_ledger(invoice_id, log)

        if record is None or not record.registered:
            record = await self._ensure_registered(
                invoice_id, record, ledger_state, amount, sink, log
            )
            if ledger_state is None or not ledger_state.exists:
                # Freshly registered; nothing can have paid it yet
                return self._payment_required(record, sink)

        if ledger_state is None or not ledger_state.paid:
            return self._payment_required(record, sink)

        return await self._fulfil(record, payload, sink, log)

    # -- state transitions ------------------------------------------------

    async def _ensure_registered(
        self,
        invoice_id: str,
        record: Invoice | None,
        ledger_state: LedgerInvoice | None,
        amount: Decimal,
        sink: EventSink,
        log,
    ) -> Invoice:
        if ledger_state is None:
            # Cannot run the read-before-create guard, so no registration
            raise LedgerUnavailable(
                "Cannot verify invoice on ledger", details={"invoice_id": invoice_id}
            )

        if ledger_state.exists:
            if ledger_state.seller.lower() != self.ledger.seller_address.lower():
                raise ValidationError(
                    "Invoice id is registered to another seller",
                    details={"invoice_id": invoice_id},
                )
            if record is None:
                record = await self._recover(invoice_id, ledger_state, amount, log)
            return await self._update(record, lambda r: replace(r, registered=True))

        if record is None:
            draft = Invoice(
                id=invoice_id,
                amount=amount,
                token=self.listing.token,
                seller_address=self.ledger.seller_address,
                ledger_reference=self.ledger.reference,
                listing_id=self.listing.id,
            )
            if not await self.store.create(draft):
                log.info("invoice_created_concurrently")
            record = await self.store.get(invoice_id)

        await self.ledger.create_invoice(invoice_id, record.token, record.amount)
        record = await self._update(record, lambda r: replace(r, registered=True))
        log.info("invoice_registered", amount=format_amount(record.amount))
        sink.emit(
            Event(
                "invoice.created",
                {"invoice_id": invoice_id, "amount": format_amount(record.amount)},
            )
        )
        return record

    async def _recover(
        self, invoice_id: str, ledger_state: LedgerInvoice, amount: Decimal, log
    ) -> Invoice:
        """Rebuild a lost local record from the ledger, the source of truth."""
        ledger_amount = self.ledger.to_decimal(ledger_state.amount)
        recovered = Invoice(
            id=invoice_id,
            amount=ledger_amount if ledger_amount > 0 else amount,
            token=ledger_state.token,
            seller_address=ledger_state.seller,
            ledger_reference=self.ledger.reference,
            registered=True,
            listing_id=self.listing.id,
            metadata={"recovered": True},
        )
        await self.store.create(recovered)
        log.warning("invoice_recovered_from_ledger", paid=ledger_state.paid)
        return await self.store.get(invoice_id)

    async def _fulfil(
        self, record: Invoice, payload: dict[str, Any], sink: EventSink, log
    ) -> GatewayResponse:
        if not record.paid:
            record = await self._update(record, lambda r: r.mark_paid())
            log.info("invoice_paid")
            sink.emit(Event("invoice.paid", {"invoice_id": record.id}))

        if record.state == InvoiceState.FULFILLED and record.asset_url:
            return self._success(record)

        try:
            asset = await asyncio.wait_for(
                self.generator.generate(record, payload), timeout=self.generation_timeout
            )
        except TimeoutError as e:
            sink.emit(Event("generation.failed", {"invoice_id": record.id, "reason": "timeout"}))
            raise GenerationFailed(
                "Content generation timed out", details={"invoice_id": record.id}
            ) from e
        except GenerationFailed as e:
            log.warning("generation_failed", error=e.message)
            sink.emit(Event("generation.failed", {"invoice_id": record.id, "reason": e.message}))
            raise

        url = await self.assets.save(asset_name(record.id, asset.extension), asset.content)
        record = await self._update(record, lambda r: r.mark_fulfilled(url))
        log.info("invoice_fulfilled", asset_url=url)
        sink.emit(Event("invoice.fulfilled", {"invoice_id": record.id, "asset_url": url}))
        return self._success(record)

    async def _update(
        self, record: Invoice, mutate: Callable[[Invoice], Invoice]
    ) -> Invoice:
        """Apply ``mutate`` through compare-and-swap, re-reading on conflict."""
        for _ in range(_CAS_ATTEMPTS):
            stored = await self.store.compare_and_swap(record, mutate(record))
            if stored is not None:
                return stored
            record = await self.store.get(record.id)
        raise LedgerUnavailable(
            "Invoice record kept changing concurrently", details={"invoice_id": record.id}
        )

    # -- helpers ----------------------------------------------------------

    def _resolve_amount(self, negotiated_price: Decimal | str | None) -> Decimal:
        if negotiated_price is None or negotiated_price == "":
            return self.listing.listing_price
        amount = parse_amount(negotiated_price)
        if amount < self.listing.floor_price:
            raise ValidationError("Negotiated price is below what this seller accepts")
        # Must be representable on the ledger before a draft is stored
        to_base_units(amount, self.ledger.decimals)
        return amount

    async def _read_ledger(self, invoice_id: str, log) -> LedgerInvoice | None:
        """Ledger view of the invoice, or None when the read fails (fail closed)."""
        try:
            return await self.ledger.get_invoice(invoice_id)
        except LedgerUnavailable as e:
            log.warning("ledger_read_failed_treating_as_unpaid", error=e.message)
            return None

    def _payment_required(self, record: Invoice, sink: EventSink) -> GatewayResponse:
        amount = format_amount(record.amount)
        sink.emit(
            Event("invoice.payment_required", {"invoice_id": record.id, "amount": amount})
        )
        return GatewayResponse(
            402,
            {
                "invoiceId": record.id,
                "amount": amount,
                "token": record.token,
                "ledgerReference": record.ledger_reference,
                "sellerAddress": record.seller_address,
                "message": f"Payment required. Pay {amount} to receive your "
                f"{self.listing.style or 'asset'}.",
            },
        )

    def _success(self, record: Invoice) -> GatewayResponse:
        return GatewayResponse(
            200,
            {
                "ok": True,
                "invoiceId": record.id,
                "assetUrl": record.asset_url,
                "receipt": {
                    "invoiceId": record.id,
                    "amount": format_amount(record.amount),
                    "token": record.token,
                    "paidAt": record.paid_at.isoformat() if record.paid_at else None,
                },
            },
        )
