"""Settlement ledger port, adapters and client."""

from .client import LedgerClient
from .encoding import (
    MAX_INVOICE_ID_BYTES,
    decode_invoice_id,
    encode_invoice_id,
    format_amount,
    from_base_units,
    parse_amount,
    to_base_units,
    validate_invoice_id,
)
from .interfaces import (
    LedgerConnectionError,
    LedgerInvoice,
    LedgerRevert,
    SettlementLedger,
    Signer,
    TxReceipt,
)
from .memory import InMemoryLedger, LocalSigner

__all__ = [
    "MAX_INVOICE_ID_BYTES",
    "InMemoryLedger",
    "LedgerClient",
    "LedgerConnectionError",
    "LedgerInvoice",
    "LedgerRevert",
    "LocalSigner",
    "SettlementLedger",
    "Signer",
    "TxReceipt",
    "decode_invoice_id",
    "encode_invoice_id",
    "format_amount",
    "from_base_units",
    "parse_amount",
    "to_base_units",
    "validate_invoice_id",
]
