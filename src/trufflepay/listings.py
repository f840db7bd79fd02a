"""
Seller registry.

Listings are read-only reference data loaded from a JSON file shaped like::

    [{"id": "petpainter", "name": "PetPainter", "style": "oil painting",
      "price": "10", "min_price": "5", "token": "0x...", "endpoint": "...",
      "specialties": ["pets", "portraits"], "quality": "premium",
      "nft_included": true, "description": "..."}]
"""

import json
import re
from decimal import Decimal
from pathlib import Path
from typing import Any

import structlog

from trufflepay.errors import ValidationError
from trufflepay.models import SellerListing

logger = structlog.get_logger(__name__)

_WORD = re.compile(r"[a-z0-9]+")


def listing_from_dict(data: dict[str, Any]) -> SellerListing:
    try:
        price = Decimal(str(data["price"]))
        floor = Decimal(str(data.get("min_price", data.get("minPrice", data["price"]))))
        listing = SellerListing(
            id=str(data["id"]),
            listing_price=price,
            floor_price=floor,
            token=str(data["token"]),
            endpoint=data.get("endpoint", ""),
            name=data.get("name", ""),
            style=data.get("style", ""),
            description=data.get("description", ""),
            quality=data.get("quality", ""),
            nft_included=bool(data.get("nft_included", data.get("nftIncluded", False))),
            capabilities=tuple(data.get("specialties", ())),
        )
    except (KeyError, TypeError, ArithmeticError) as e:
        raise ValidationError(f"Invalid listing entry: {e}", details={"entry": data.get("id")}) from e

    if listing.floor_price <= 0 or listing.floor_price > listing.listing_price:
        raise ValidationError(
            "Listing floor must be positive and not above the listing price",
            details={"listing_id": listing.id},
        )
    return listing


class ListingRegistry:
    def __init__(self, listings: list[SellerListing] | None = None):
        self._listings: dict[str, SellerListing] = {}
        for listing in listings or []:
            self._listings[listing.id] = listing

    @classmethod
    def from_file(cls, path: str | Path) -> "ListingRegistry":
        path = Path(path)
        if not path.exists():
            logger.warning("listing_registry_missing", path=str(path))
            return cls()
        entries = json.loads(path.read_text())
        registry = cls([listing_from_dict(entry) for entry in entries])
        logger.info("listing_registry_loaded", path=str(path), count=len(registry))
        return registry

    def __len__(self) -> int:
        return len(self._listings)

    def get(self, listing_id: str) -> SellerListing:
        try:
            return self._listings[listing_id]
        except KeyError:
            raise ValidationError(f"Unknown listing: {listing_id}") from None

    def all(self) -> list[SellerListing]:
        return list(self._listings.values())

    def public_view(self) -> list[dict[str, Any]]:
        return [listing.public_view() for listing in self._listings.values()]

    def select(self, requirements: str, budget: Decimal | None = None) -> SellerListing | None:
        """
        Pick the listing that best matches free-text requirements.

        Scores keyword overlap with style, name, specialties and description.
        Listings within budget win over better matches that are not; ties go
        to the cheaper listing.
        """
        if not self._listings:
            return None

        words = set(_WORD.findall((requirements or "").lower()))

        def score(listing: SellerListing) -> tuple[bool, int, Decimal]:
            text = " ".join(
                [listing.style, listing.name, listing.description, *listing.capabilities]
            ).lower()
            overlap = len(words & set(_WORD.findall(text)))
            affordable = budget is None or listing.floor_price <= budget
            return (affordable, overlap, -listing.listing_price)

        chosen = max(self._listings.values(), key=score)
        logger.info("listing_selected", listing_id=chosen.id, budget=str(budget) if budget else None)
        return chosen
