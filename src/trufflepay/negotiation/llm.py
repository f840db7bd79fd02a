"""
LLM-backed negotiation policies using litellm.

The model only suggests a move. Any provider error, timeout or malformed
reply falls back to the deterministic schedule policy, and the engine's
guards still bound whatever is returned.
"""

import asyncio
import json
import re
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import litellm
import structlog
from jinja2 import Template
from pydantic import BaseModel, Field

from trufflepay.models import NegotiationSession, Offer, SellerListing

from .policies import (
    BuyerMove,
    ScheduleBuyerPolicy,
    ScheduleSellerPolicy,
    SellerMove,
    standing_counter,
)

logger = structlog.get_logger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"


class BuyerDecision(BaseModel):
    offer: float = Field(description="Offer for this round")
    accept: bool = Field(False, description="Accept the seller's current ask")
    tactic: str = ""
    message: str = ""


class SellerDecision(BaseModel):
    accept: bool
    counter: float | None = None
    tactic: str = ""
    message: str = ""


def clean_and_parse_json(text: str) -> dict[str, Any]:
    """Strip Markdown fences and pull the first JSON object out of ``text``."""
    if not text or not isinstance(text, str):
        raise ValueError(f"Invalid input: expected string, got {type(text)}")

    text = re.sub(r"^```(?:json)?\s*", "", text.strip(), flags=re.IGNORECASE)
    text = re.sub(r"\s*```$", "", text).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    match = re.search(r"\{.*\}", text, re.DOTALL)
    if match:
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            pass
    raise ValueError(f"Failed to parse valid JSON from LLM response: {text[:100]}...")


class LLMEngine:
    """Async litellm client returning a parsed JSON object."""

    def __init__(
        self,
        model: str,
        temperature: float = 0.7,
        api_key: str | None = None,
        timeout: float = 20.0,
    ):
        self.model = model
        self.temperature = temperature
        self.api_key = api_key
        self.timeout = timeout
        logger.info("llm_engine_initialized", model=model, temperature=temperature)

    async def complete_json(self, messages: list[dict[str, str]]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key

        logger.debug("llm_call_started", model=self.model, message_count=len(messages))
        response = await asyncio.wait_for(
            litellm.acompletion(**kwargs), timeout=self.timeout
        )
        content = response.choices[0].message.content
        logger.info("llm_call_completed", model=self.model, response_length=len(content or ""))
        return clean_and_parse_json(content)


def _load_template(name: str) -> Template:
    return Template((PROMPTS_DIR / name).read_text())


def _history(session: NegotiationSession) -> list[dict[str, Any]]:
    return [offer.to_dict() for offer in session.history]


def _decimal(value: float) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Non-numeric price from model: {value!r}") from e


class LLMBuyerPolicy:
    def __init__(self, engine: LLMEngine, fallback: ScheduleBuyerPolicy):
        self.engine = engine
        self.fallback = fallback
        self.template = _load_template("buyer.md")

    async def propose(
        self, session: NegotiationSession, listing: SellerListing
    ) -> BuyerMove:
        prompt = self.template.render(
            listing_name=listing.name or listing.id,
            listing_style=listing.style,
            listing_price=listing.listing_price,
            token=listing.token,
            buyer_budget=session.buyer_budget,
            round=session.round,
            max_rounds=session.max_rounds,
            asking=standing_counter(session),
            history=_history(session),
        )
        try:
            raw = await self.engine.complete_json(
                [
                    {"role": "system", "content": prompt},
                    {"role": "user", "content": "Make your move."},
                ]
            )
            decision = BuyerDecision.model_validate(raw)
            price = _decimal(decision.offer)
        except Exception as e:
            logger.warning(
                "llm_buyer_fallback", error=str(e), round=session.round, model=self.engine.model
            )
            return await self.fallback.propose(session, listing)

        logger.info(
            "llm_buyer_decision",
            round=session.round,
            offer=str(price),
            accept=decision.accept,
            tactic=decision.tactic,
        )
        return BuyerMove(
            price=price,
            rationale=decision.message or decision.tactic,
            accept=decision.accept,
        )


class LLMSellerPolicy:
    def __init__(self, engine: LLMEngine, fallback: ScheduleSellerPolicy):
        self.engine = engine
        self.fallback = fallback
        self.template = _load_template("seller.md")

    async def respond(
        self, session: NegotiationSession, listing: SellerListing, offer: Offer
    ) -> SellerMove:
        prompt = self.template.render(
            listing_name=listing.name or listing.id,
            listing_style=listing.style,
            quality=listing.quality,
            listing_price=listing.listing_price,
            floor_price=listing.floor_price,
            token=listing.token,
            round=session.round,
            max_rounds=session.max_rounds,
            offer=offer.price,
            history=_history(session),
        )
        try:
            raw = await self.engine.complete_json(
                [
                    {"role": "system", "content": prompt},
                    {"role": "user", "content": "Respond to the offer."},
                ]
            )
            decision = SellerDecision.model_validate(raw)
            counter = None if decision.counter is None else _decimal(decision.counter)
        except Exception as e:
            logger.warning(
                "llm_seller_fallback", error=str(e), round=session.round, model=self.engine.model
            )
            return await self.fallback.respond(session, listing, offer)

        logger.info(
            "llm_seller_decision",
            round=session.round,
            accept=decision.accept,
            counter=str(counter) if counter is not None else None,
            tactic=decision.tactic,
        )
        return SellerMove(
            accept=decision.accept,
            counter=counter,
            rationale=decision.message or decision.tactic,
        )
