"""
Pricing policies for each side of a negotiation.

Policies only *propose*; the engine enforces budget and floor limits on
whatever they return, so a misbehaving policy cannot break those bounds.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, runtime_checkable

from trufflepay.models import Actor, NegotiationSession, Offer, SellerListing


@dataclass(frozen=True)
class BuyerMove:
    price: Decimal
    rationale: str
    accept: bool = False  # Accept the seller's standing counter


@dataclass(frozen=True)
class SellerMove:
    accept: bool
    counter: Decimal | None
    rationale: str


@runtime_checkable
class BuyerPolicy(Protocol):
    async def propose(
        self, session: NegotiationSession, listing: SellerListing
    ) -> BuyerMove: ...


@runtime_checkable
class SellerPolicy(Protocol):
    async def respond(
        self, session: NegotiationSession, listing: SellerListing, offer: Offer
    ) -> SellerMove: ...


def schedule_fraction(schedule: list[float], round_number: int) -> Decimal:
    index = min(round_number, len(schedule)) - 1
    return Decimal(str(schedule[index]))


def standing_counter(session: NegotiationSession) -> Decimal:
    """The seller's latest asking price; the listing price before any counter."""
    last = session.last_offer(Actor.SELLER)
    return last.price if last else session.listing_price


class ScheduleBuyerPolicy:
    """
    Deterministic concession schedule.

    Round 1 anchors at a fraction of the listing price and later rounds
    concede toward the budget. A standing counter at or below the planned
    offer is accepted outright.
    """

    TACTICS = ("anchor low", "strategic concession", "best and final")

    def __init__(self, schedule: list[float]):
        self.schedule = schedule

    async def propose(
        self, session: NegotiationSession, listing: SellerListing
    ) -> BuyerMove:
        planned = min(
            session.buyer_budget,
            session.listing_price * schedule_fraction(self.schedule, session.round),
        )
        asking = standing_counter(session)
        tactic = self.TACTICS[min(session.round, len(self.TACTICS)) - 1]

        if session.last_offer(Actor.SELLER) and asking <= planned:
            return BuyerMove(
                price=asking,
                rationale=f"Counter of {asking} is within plan; accepting",
                accept=True,
            )
        return BuyerMove(
            price=planned,
            rationale=f"Round {session.round} ({tactic}): offering {planned}",
        )


class ScheduleSellerPolicy:
    """
    Deterministic seller defence.

    Each round the seller's target is a fraction of the listing price (never
    below the floor). Offers at or above the target are accepted; anything
    lower is countered at the target.
    """

    def __init__(self, schedule: list[float]):
        self.schedule = schedule

    async def respond(
        self, session: NegotiationSession, listing: SellerListing, offer: Offer
    ) -> SellerMove:
        target = max(
            session.floor_price,
            session.listing_price * schedule_fraction(self.schedule, session.round),
        )
        if offer.price >= target:
            return SellerMove(
                accept=True,
                counter=None,
                rationale=f"Offer {offer.price} meets target for round {session.round}",
            )
        return SellerMove(
            accept=False,
            counter=target,
            rationale=f"Value justification: countering at {target}",
        )
