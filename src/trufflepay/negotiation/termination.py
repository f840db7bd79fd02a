"""Settlement rules applied when the round budget runs out without agreement."""

from decimal import Decimal
from typing import Protocol, runtime_checkable

from trufflepay.errors import NegotiationFailed
from trufflepay.models import Actor, NegotiationSession


@runtime_checkable
class TerminationPolicy(Protocol):
    name: str

    def settle(self, session: NegotiationSession) -> Decimal:
        """Return the forced price or raise ``NegotiationFailed``."""
        ...


class MidpointSettlement:
    """
    Midpoint of the last buyer offer and last seller counter, clamped to
    ``[floor_price, buyer_budget]``. The clamp is the only guarantee.
    """

    name = "forced_midpoint"

    def settle(self, session: NegotiationSession) -> Decimal:
        if session.buyer_budget < session.floor_price:
            raise NegotiationFailed(
                "Buyer budget is below the seller floor",
                details={"rounds": len({o.round for o in session.history})},
            )

        buyer = session.last_offer(Actor.BUYER)
        seller = session.last_offer(Actor.SELLER)
        low = buyer.price if buyer else session.floor_price
        high = seller.price if seller else session.listing_price

        midpoint = (low + high) / 2
        return max(session.floor_price, min(session.buyer_budget, midpoint))
