"""
Bounded, round-based price negotiation between a buyer and a seller policy.

The engine is an explicit state machine:

    BUYER_TURN -> SELLER_TURN -> BUYER_TURN ... -> SETTLED

Each round the buyer either proposes a price or accepts the standing
counter, then the seller accepts or counters. When ``max_rounds`` is spent
without agreement the termination policy forces a price. Every move passes
through a guard that keeps the buyer within budget and the seller at or
above the floor, whatever the policy proposed.
"""

import enum
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal

import structlog

from trufflepay.errors import NegotiationFailed, ValidationError
from trufflepay.events import Event, EventSink, NullEventSink
from trufflepay.ledger.encoding import DEFAULT_DECIMALS, format_amount, quantize_price
from trufflepay.models import (
    Actor,
    NegotiationResult,
    NegotiationSession,
    Offer,
    SellerListing,
)

from .policies import BuyerMove, BuyerPolicy, SellerMove, SellerPolicy, standing_counter
from .termination import MidpointSettlement, TerminationPolicy

logger = structlog.get_logger(__name__)


class Phase(enum.Enum):
    BUYER_TURN = "buyer_turn"
    SELLER_TURN = "seller_turn"
    SETTLED = "settled"


class NegotiationEngine:
    def __init__(
        self,
        buyer: BuyerPolicy,
        seller: SellerPolicy,
        termination: TerminationPolicy | None = None,
        max_rounds: int = 3,
        precision: int = 2,
        sink: EventSink | None = None,
    ):
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.buyer = buyer
        self.seller = seller
        self.termination = termination or MidpointSettlement()
        self.max_rounds = max_rounds
        self.precision = precision
        self.sink = sink or NullEventSink()

    async def negotiate(
        self,
        listing: SellerListing,
        buyer_budget: Decimal,
        sink: EventSink | None = None,
    ) -> NegotiationResult:
        """
        Run one negotiation session to completion.

        Returns the agreed price, always within ``[floor_price, buyer_budget]``.
        Raises ``NegotiationFailed`` when no such price exists.
        """
        sink = sink or self.sink
        buyer_budget = Decimal(str(buyer_budget))
        if buyer_budget <= 0:
            raise ValidationError("buyer_budget must be positive")

        session = NegotiationSession(
            listing_price=listing.listing_price,
            floor_price=listing.floor_price,
            buyer_budget=buyer_budget,
            max_rounds=self.max_rounds,
        )
        log = logger.bind(listing_id=listing.id, max_rounds=self.max_rounds)
        log.info("negotiation_started", listing_price=format_amount(listing.listing_price))

        phase = Phase.BUYER_TURN
        pending: Offer | None = None
        try:
            while phase is not Phase.SETTLED:
                if phase is Phase.BUYER_TURN:
                    move = self._guard_buyer(
                        session, await self.buyer.propose(session, listing)
                    )
                    pending = self._record(
                        session, Actor.BUYER, move.price, move.rationale, move.accept, sink
                    )
                    if move.accept:
                        self._settle(session, move.price, "buyer_accepted")
                        phase = Phase.SETTLED
                    else:
                        phase = Phase.SELLER_TURN

                elif phase is Phase.SELLER_TURN:
                    move = self._guard_seller(
                        session, pending, await self.seller.respond(session, listing, pending)
                    )
                    if move.accept:
                        self._record(
                            session, Actor.SELLER, pending.price, move.rationale, True, sink
                        )
                        self._settle(session, pending.price, "seller_accepted")
                        phase = Phase.SETTLED
                    else:
                        self._record(
                            session, Actor.SELLER, move.counter, move.rationale, False, sink
                        )
                        if session.round >= session.max_rounds:
                            forced = self.termination.settle(session)
                            self._settle(session, forced, self.termination.name)
                            phase = Phase.SETTLED
                        else:
                            session.round += 1
                            phase = Phase.BUYER_TURN
        except NegotiationFailed as e:
            e.details = {
                **(e.details or {}),
                "history": [o.to_dict() for o in session.history],
            }
            log.warning("negotiation_failed", reason=e.message, rounds=session.round)
            sink.emit(
                Event(
                    "negotiation.failed",
                    {"listing_id": listing.id, "reason": e.message, "rounds": session.round},
                )
            )
            raise

        result = NegotiationResult(
            agreed_price=session.agreed_price,
            history=list(session.history),
            rounds=session.round,
            settlement=session.settlement,
        )
        log.info(
            "negotiation_completed",
            agreed_price=format_amount(result.agreed_price),
            rounds=result.rounds,
            settlement=result.settlement,
        )
        sink.emit(
            Event(
                "negotiation.completed",
                {"listing_id": listing.id, **result.to_dict()},
            )
        )
        return result

    # -- guards -----------------------------------------------------------

    def _guard_buyer(self, session: NegotiationSession, move: BuyerMove) -> BuyerMove:
        """Buyer never exceeds budget, never retreats, never outbids the ask."""
        asking = standing_counter(session)
        if move.accept:
            if session.last_offer(Actor.SELLER) and asking <= session.buyer_budget:
                return BuyerMove(price=asking, rationale=move.rationale, accept=True)
            logger.warning("buyer_accept_rejected", asking=str(asking))
            move = BuyerMove(price=move.price, rationale=move.rationale)

        price = self._round(move.price)
        previous = session.last_offer(Actor.BUYER)
        if previous:
            price = max(price, previous.price)
        price = min(price, session.buyer_budget, asking)
        if price <= 0:
            price = min(session.buyer_budget, asking)
        return BuyerMove(price=price, rationale=move.rationale)

    def _guard_seller(
        self, session: NegotiationSession, offer: Offer, move: SellerMove
    ) -> SellerMove:
        """Seller never accepts or counters below the floor and never raises its ask."""
        if move.accept and offer.price >= session.floor_price:
            return move
        if move.accept:
            logger.warning("seller_accept_below_floor_blocked", offer=str(offer.price))

        counter = move.counter if move.counter is not None else standing_counter(session)
        counter = max(self._round(counter), session.floor_price)
        counter = min(counter, standing_counter(session))
        if offer.price >= counter:
            return SellerMove(accept=True, counter=None, rationale=move.rationale)
        return SellerMove(accept=False, counter=counter, rationale=move.rationale)

    # -- internals --------------------------------------------------------

    def _record(
        self,
        session: NegotiationSession,
        actor: Actor,
        price: Decimal,
        rationale: str,
        accepted: bool,
        sink: EventSink,
    ) -> Offer:
        offer = Offer(
            round=session.round,
            actor=actor,
            price=price,
            rationale=rationale,
            accepted=accepted,
        )
        session.history.append(offer)
        sink.emit(Event("negotiation.offer", offer.to_dict()))
        return offer

    def _settle(self, session: NegotiationSession, price: Decimal, settlement: str) -> None:
        session.agreed_price = self._bounded(session, price)
        session.settlement = settlement

    def _round(self, price: Decimal) -> Decimal:
        return quantize_price(Decimal(str(price)), self.precision)

    def _bounded(self, session: NegotiationSession, price: Decimal) -> Decimal:
        """
        Round to ``precision`` while staying inside ``[floor, budget]``.

        When no value at that precision fits, fall back to ledger precision.
        """
        low, high = session.floor_price, session.buyer_budget
        if high < low:
            raise NegotiationFailed("Buyer budget is below the seller floor")

        price = max(low, min(high, price))
        rounded = self._round(price)
        if low <= rounded <= high:
            return rounded

        step = Decimal(1).scaleb(-self.precision)
        up = low.quantize(step, rounding=ROUND_CEILING)
        down = high.quantize(step, rounding=ROUND_FLOOR)
        if up <= high:
            return up
        if down >= low:
            return down
        return price.quantize(Decimal(1).scaleb(-DEFAULT_DECIMALS), rounding=ROUND_FLOOR)
