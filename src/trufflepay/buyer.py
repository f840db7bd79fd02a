"""
Buyer-side orchestration of a pay-gated purchase.

negotiate -> request (402) -> pay on the ledger -> request again (200)
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

import httpx
import structlog

from trufflepay.errors import (
    LedgerUnavailable,
    PaymentNotRecognized,
    TrufflePayError,
    ValidationError,
    error_from_payload,
)
from trufflepay.events import Event, EventSink, NullEventSink
from trufflepay.gateway import GatewayResponse
from trufflepay.ledger import LedgerClient, Signer, parse_amount
from trufflepay.models import NegotiationResult, PaymentReceipt, SellerListing

logger = structlog.get_logger(__name__)


class ResourceClient(Protocol):
    """What the buyer needs from a seller: ``ResourceGateway`` or ``GatewayClient``."""

    async def generate(
        self,
        payload: dict[str, Any],
        invoice_id: str | None = None,
        negotiated_price: Decimal | str | None = None,
    ) -> GatewayResponse: ...


class Negotiator(Protocol):
    async def negotiate(
        self,
        listing: SellerListing,
        buyer_budget: Decimal,
        sink: EventSink | None = None,
    ) -> NegotiationResult: ...


class GatewayClient:
    """HTTP client for a remote seller gateway."""

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 180.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.timeout = timeout

    async def quote(self) -> dict[str, Any]:
        response = await self._request("GET", "/quote")
        return response.json()

    async def negotiate(
        self, listing_id: str, buyer_budget: Decimal | None = None, requirements: str = ""
    ) -> NegotiationResult:
        """Ask the seller to run a negotiation against its confidential floor."""
        body: dict[str, Any] = {"listing": listing_id, "requirements": requirements}
        if buyer_budget is not None:
            body["buyerBudget"] = str(buyer_budget)
        response = await self._request("POST", "/negotiate", json=body)
        return NegotiationResult.from_dict(response.json())

    async def generate(
        self,
        payload: dict[str, Any],
        invoice_id: str | None = None,
        negotiated_price: Decimal | str | None = None,
    ) -> GatewayResponse:
        body: dict[str, Any] = {"payload": payload}
        if invoice_id:
            body["invoiceId"] = invoice_id
        if negotiated_price is not None:
            body["negotiatedPrice"] = str(negotiated_price)

        response = await self._request("POST", "/generate", json=body)
        return GatewayResponse(response.status_code, response.json())

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            if self.client is not None:
                response = await self.client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise LedgerUnavailable(f"Seller gateway unreachable: {e}") from e

        if response.status_code in (200, 402):
            return response
        try:
            payload = response.json()
        except ValueError:
            payload = {"message": response.text}
        raise error_from_payload(payload if isinstance(payload, dict) else {})



class RemoteNegotiator:
    """Runs negotiation on the seller's gateway, for buyers that do not hold the floor."""

    def __init__(self, client: GatewayClient):
        self.client = client

    async def negotiate(
        self,
        listing: SellerListing,
        buyer_budget: Decimal,
        sink: EventSink | None = None,
    ) -> NegotiationResult:
        result = await self.client.negotiate(listing.id, buyer_budget)
        if sink is not None:
            sink.emit(
                Event("negotiation.completed", {"listing_id": listing.id, **result.to_dict()})
            )
        return result


def listing_from_quote(quote: dict[str, Any]) -> SellerListing:
    """
    Buyer-side view of a seller built from its ``/quote``.

    The floor is never quoted, so it is set to the listing price; only the
    seller's own engine ever bounds offers by the real floor.
    """
    try:
        price = parse_amount(quote["price"])
        return SellerListing(
            id=quote.get("listingId") or quote["sellerId"],
            listing_price=price,
            floor_price=price,
            token=quote["token"],
            name=quote.get("name", ""),
            style=quote.get("style", ""),
            description=quote.get("description", ""),
            capabilities=tuple(quote.get("capabilities", ())),
        )
    except KeyError as e:
        raise ValidationError(f"Malformed quote: missing {e}") from e


@dataclass(frozen=True)
class PaymentRequest:
    """Invoice details from a 402 response."""

    id: str
    amount: Decimal
    token: str
    ledger_reference: str
    seller_address: str
    message: str = ""

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> "PaymentRequest":
        try:
            return cls(
                id=body["invoiceId"],
                amount=parse_amount(body["amount"]),
                token=body["token"],
                ledger_reference=body["ledgerReference"],
                seller_address=body["sellerAddress"],
                message=body.get("message", ""),
            )
        except KeyError as e:
            raise ValidationError(f"Malformed payment-required response: missing {e}") from e


@dataclass(frozen=True)
class PurchaseResult:
    invoice_id: str
    asset_url: str
    receipt: dict[str, Any]
    negotiation: NegotiationResult | None = None
    payment: PaymentReceipt | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "invoiceId": self.invoice_id,
            "assetUrl": self.asset_url,
            "receipt": self.receipt,
            "negotiation": self.negotiation.to_dict() if self.negotiation else None,
            "txHash": self.payment.tx_hash if self.payment else None,
        }


class BuyerAgent:
    """
    Drives one purchase end to end.

    A 200 on the first request (caller supplied an already-paid invoice id)
    short-circuits: nothing is negotiated or paid again. A second 402 after
    payment raises ``PaymentNotRecognized`` rather than paying twice.
    """

    def __init__(
        self,
        engine: Negotiator,
        ledger: LedgerClient,
        signer: Signer,
        client_for: Callable[[SellerListing], ResourceClient],
        fetch_attempts: int = 3,
        retry_delay: float = 0.5,
        sink: EventSink | None = None,
    ):
        self.engine = engine
        self.ledger = ledger
        self.signer = signer
        self.client_for = client_for
        self.fetch_attempts = max(1, fetch_attempts)
        self.retry_delay = retry_delay
        self.sink = sink or NullEventSink()

    async def purchase(
        self,
        listing: SellerListing,
        payload: dict[str, Any],
        buyer_budget: Decimal | None = None,
        invoice_id: str | None = None,
    ) -> PurchaseResult:
        client = self.client_for(listing)
        log = logger.bind(listing_id=listing.id)
        negotiation: NegotiationResult | None = None

        if invoice_id:
            response = await client.generate(payload, invoice_id=invoice_id)
        else:
            negotiation = await self.engine.negotiate(
                listing, buyer_budget or listing.listing_price, sink=self.sink
            )
            response = await client.generate(
                payload, negotiated_price=negotiation.agreed_price
            )

        if not response.payment_required:
            log.info("purchase_short_circuit", invoice_id=response.body.get("invoiceId"))
            return self._result(response, negotiation, None)

        request = PaymentRequest.from_body(response.body)
        self._check_request(request, negotiation)
        log = log.bind(invoice_id=request.id)
        log.info("payment_required", amount=str(request.amount))

        payment = await self.ledger.pay_invoice(request, self.signer)
        log.info("payment_completed", tx_hash=payment.tx_hash, already_paid=payment.already_paid)

        response = await self._fetch_paid(client, payload, request, payment, log)
        return self._result(response, negotiation, payment)

    async def _fetch_paid(
        self,
        client: ResourceClient,
        payload: dict[str, Any],
        request: PaymentRequest,
        payment: PaymentReceipt,
        log,
    ) -> GatewayResponse:
        """Retry fetching a paid invoice on transient errors; never pay again."""
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await client.generate(payload, invoice_id=request.id)
            except TrufflePayError as e:
                if not e.retryable or attempt >= self.fetch_attempts:
                    raise
                log.warning("paid_fetch_retry", attempt=attempt, error=e.code)
                await asyncio.sleep(self.retry_delay * attempt)
                continue

            if response.payment_required:
                log.error("payment_not_recognized", tx_hash=payment.tx_hash)
                self.sink.emit(
                    Event(
                        "payment.not_recognized",
                        {"invoice_id": request.id, "tx_hash": payment.tx_hash},
                    )
                )
                raise PaymentNotRecognized(request.id, payment.tx_hash)
            return response

    def _check_request(
        self, request: PaymentRequest, negotiation: NegotiationResult | None
    ) -> None:
        if request.ledger_reference.lower() != self.ledger.reference.lower():
            raise ValidationError(
                "Invoice settles on an unexpected ledger",
                details={"invoice_id": request.id, "ledgerReference": request.ledger_reference},
            )
        if negotiation and request.amount > negotiation.agreed_price:
            raise ValidationError(
                "Invoice amount exceeds the negotiated price",
                details={
                    "invoice_id": request.id,
                    "amount": str(request.amount),
                    "agreedPrice": str(negotiation.agreed_price),
                },
            )

    @staticmethod
    def _result(
        response: GatewayResponse,
        negotiation: NegotiationResult | None,
        payment: PaymentReceipt | None,
    ) -> PurchaseResult:
        body = response.body
        return PurchaseResult(
            invoice_id=body["invoiceId"],
            asset_url=body["assetUrl"],
            receipt=body.get("receipt", {}),
            negotiation=negotiation,
            payment=payment,
        )
