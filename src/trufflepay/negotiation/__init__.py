"""Bounded price negotiation between buyer and seller agents."""

from trufflepay.config import Settings
from trufflepay.events import EventSink

from .budget import extract_budget
from .engine import NegotiationEngine, Phase
from .llm import LLMBuyerPolicy, LLMEngine, LLMSellerPolicy
from .policies import (
    BuyerMove,
    BuyerPolicy,
    ScheduleBuyerPolicy,
    ScheduleSellerPolicy,
    SellerMove,
    SellerPolicy,
)
from .termination import MidpointSettlement, TerminationPolicy


def build_engine(settings: Settings, sink: EventSink | None = None) -> NegotiationEngine:
    """Engine wired from settings; reasoning policies only when the LLM is enabled."""
    buyer: BuyerPolicy = ScheduleBuyerPolicy(settings.negotiation.buyer_schedule)
    seller: SellerPolicy = ScheduleSellerPolicy(settings.negotiation.seller_schedule)

    if settings.llm.enabled:
        engine = LLMEngine(
            model=settings.llm.model,
            temperature=settings.llm.temperature,
            api_key=settings.llm.api_key.get_secret_value() or None,
            timeout=settings.llm.timeout_seconds,
        )
        buyer = LLMBuyerPolicy(engine, fallback=buyer)
        seller = LLMSellerPolicy(engine, fallback=seller)

    return NegotiationEngine(
        buyer=buyer,
        seller=seller,
        termination=MidpointSettlement(),
        max_rounds=settings.negotiation.max_rounds,
        precision=settings.negotiation.precision,
        sink=sink,
    )


__all__ = [
    "BuyerMove",
    "BuyerPolicy",
    "LLMBuyerPolicy",
    "LLMEngine",
    "LLMSellerPolicy",
    "MidpointSettlement",
    "NegotiationEngine",
    "Phase",
    "ScheduleBuyerPolicy",
    "ScheduleSellerPolicy",
    "SellerMove",
    "SellerPolicy",
    "TerminationPolicy",
    "build_engine",
    "extract_budget",
]
