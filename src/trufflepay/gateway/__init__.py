"""Seller-side pay-gated resource gateway."""

from .assets import LocalAssetStore, asset_name
from .earnings import WithdrawalSummary, withdraw_earnings
from .generator import (
    ContentGenerator,
    GeneratedAsset,
    HttpContentGenerator,
    StaticContentGenerator,
)
from .locks import KeyedLock
from .service import GatewayResponse, ResourceGateway, new_invoice_id

__all__ = [
    "ContentGenerator",
    "GatewayResponse",
    "GeneratedAsset",
    "HttpContentGenerator",
    "KeyedLock",
    "LocalAssetStore",
    "ResourceGateway",
    "StaticContentGenerator",
    "WithdrawalSummary",
    "asset_name",
    "new_invoice_id",
    "withdraw_earnings",
]
