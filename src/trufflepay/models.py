"""Core domain records shared by the negotiation, ledger and gateway layers."""

import enum
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any


class InvoiceState(str, enum.Enum):
    """Lifecycle of a pay-gated invoice. UNKNOWN means no local record exists."""

    UNKNOWN = "UNKNOWN"
    CREATED = "CREATED"  # Registered, awaiting payment
    PAID = "PAID"  # Ledger confirmed payment
    FULFILLED = "FULFILLED"  # Asset generated and stored


class Actor(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Invoice:
    """
    Local mirror of a ledger invoice.

    The ledger stays authoritative for ``paid``; this record only caches what
    was observed plus fulfillment metadata. ``version`` is bumped by the store
    on every successful compare-and-swap.
    """

    id: str
    amount: Decimal
    token: str
    seller_address: str
    ledger_reference: str
    state: InvoiceState = InvoiceState.CREATED
    paid: bool = False
    registered: bool = False  # Ledger createInvoice has been issued
    created_at: datetime = field(default_factory=utcnow)
    paid_at: datetime | None = None
    fulfilled_at: datetime | None = None
    asset_url: str | None = None
    listing_id: str | None = None
    version: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def mark_paid(self, paid_at: datetime | None = None) -> "Invoice":
        if self.paid:
            return self
        return replace(
            self,
            paid=True,
            paid_at=paid_at or utcnow(),
            state=InvoiceState.PAID
            if self.state != InvoiceState.FULFILLED
            else self.state,
        )

    def mark_fulfilled(self, asset_url: str) -> "Invoice":
        if not self.paid:
            raise ValueError("Cannot fulfil an invoice that is not paid")
        return replace(
            self,
            asset_url=asset_url,
            fulfilled_at=utcnow(),
            state=InvoiceState.FULFILLED,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "amount": str(self.amount),
            "token": self.token,
            "seller_address": self.seller_address,
            "ledger_reference": self.ledger_reference,
            "state": self.state.value,
            "paid": self.paid,
            "registered": self.registered,
            "created_at": self.created_at.isoformat(),
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "fulfilled_at": self.fulfilled_at.isoformat()
            if self.fulfilled_at
            else None,
            "asset_url": self.asset_url,
            "listing_id": self.listing_id,
            "version": self.version,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Invoice":
        def _dt(value: str | None) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        return cls(
            id=data["id"],
            amount=Decimal(str(data["amount"])),
            token=data["token"],
            seller_address=data["seller_address"],
            ledger_reference=data["ledger_reference"],
            state=InvoiceState(data.get("state", InvoiceState.CREATED.value)),
            paid=bool(data.get("paid", False)),
            registered=bool(data.get("registered", False)),
            created_at=_dt(data.get("created_at")) or utcnow(),
            paid_at=_dt(data.get("paid_at")),
            fulfilled_at=_dt(data.get("fulfilled_at")),
            asset_url=data.get("asset_url"),
            listing_id=data.get("listing_id"),
            version=int(data.get("version", 0)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class Offer:
    """A single move in a negotiation transcript."""

    round: int
    actor: Actor
    price: Decimal
    rationale: str = ""
    accepted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "round": self.round,
            "actor": self.actor.value,
            "price": str(self.price),
            "rationale": self.rationale,
            "accepted": self.accepted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Offer":
        return cls(
            round=int(data["round"]),
            actor=Actor(data["actor"]),
            price=Decimal(str(data["price"])),
            rationale=data.get("rationale", ""),
            accepted=bool(data.get("accepted", False)),
        )


@dataclass
class NegotiationSession:
    """Mutable state of one negotiation. Never shared across sessions."""

    listing_price: Decimal
    floor_price: Decimal
    buyer_budget: Decimal
    max_rounds: int
    round: int = 1
    history: list[Offer] = field(default_factory=list)
    agreed_price: Decimal | None = None
    settlement: str | None = None

    def last_offer(self, actor: Actor) -> Offer | None:
        for offer in reversed(self.history):
            if offer.actor == actor:
                return offer
        return None


@dataclass(frozen=True)
class NegotiationResult:
    agreed_price: Decimal
    history: list[Offer]
    rounds: int
    settlement: str  # "seller_accepted", "buyer_accepted", "forced_midpoint"

    def to_dict(self) -> dict[str, Any]:
        return {
            "agreedPrice": str(self.agreed_price),
            "history": [offer.to_dict() for offer in self.history],
            "rounds": self.rounds,
            "settlement": self.settlement,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NegotiationResult":
        return cls(
            agreed_price=Decimal(str(data["agreedPrice"])),
            history=[Offer.from_dict(offer) for offer in data.get("history", [])],
            rounds=int(data["rounds"]),
            settlement=data["settlement"],
        )


@dataclass(frozen=True)
class SellerListing:
    """
    Seller reference data. Read-only for the core.

    ``floor_price`` is seller-confidential and must never reach a buyer-facing
    payload; use ``public_view`` for anything that leaves the process.
    """

    id: str
    listing_price: Decimal
    floor_price: Decimal
    token: str
    endpoint: str = ""
    name: str = ""
    style: str = ""
    description: str = ""
    quality: str = ""
    nft_included: bool = False
    capabilities: tuple[str, ...] = ()

    def public_view(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "style": self.style,
            "price": str(self.listing_price),
            "token": self.token,
            "endpoint": self.endpoint,
            "description": self.description,
            "quality": self.quality,
            "nftIncluded": self.nft_included,
            "capabilities": list(self.capabilities),
        }


@dataclass(frozen=True)
class PaymentReceipt:
    """Proof that a ledger payment was finalised."""

    success: bool
    tx_hash: str | None
    approve_tx_hash: str | None = None
    already_paid: bool = False
    confirmed_at: datetime = field(default_factory=utcnow)
