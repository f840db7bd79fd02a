from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payload: dict[str, Any] = Field(default_factory=dict)
    invoice_id: str | None = Field(None, alias="invoiceId")
    negotiated_price: str | None = Field(None, alias="negotiatedPrice")


class NegotiateRequest(BaseModel):
    """``listing`` is a registry id or a full listing entry."""

    model_config = ConfigDict(populate_by_name=True)

    listing: str | dict[str, Any]
    buyer_budget: Decimal | None = Field(None, alias="buyerBudget")
    requirements: str = ""
