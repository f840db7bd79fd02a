"""
Error taxonomy for the pay-gated protocol.

Every error carries a stable ``code`` (used on the wire) and an HTTP status so
the API layer can map it without knowing the individual classes.
"""

from typing import Any


class TrufflePayError(Exception):
    """Base class for protocol errors."""

    code = "InternalError"
    http_status = 500
    retryable = False

    def __init__(self, message: str, details: Any | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(TrufflePayError):
    """Malformed request or invoice id that cannot be encoded for the ledger."""

    code = "ValidationError"
    http_status = 400


class UnknownInvoice(TrufflePayError):
    """Invoice id is not registered on the ledger."""

    code = "UnknownInvoice"
    http_status = 404

    def __init__(self, invoice_id: str):
        super().__init__(
            f"Invoice not registered on ledger: {invoice_id}",
            details={"invoice_id": invoice_id},
        )
        self.invoice_id = invoice_id


class InsufficientFunds(TrufflePayError):
    """Balance or allowance shortfall. Not retryable without funding."""

    code = "InsufficientFunds"
    http_status = 409


class LedgerUnavailable(TrufflePayError):
    """Network failure or timeout talking to the ledger. Retryable."""

    code = "LedgerUnavailable"
    http_status = 503
    retryable = True


class PaymentNotRecognized(TrufflePayError):
    """Payment was submitted but the gateway still asks for payment."""

    code = "PaymentNotRecognized"
    http_status = 502

    def __init__(self, invoice_id: str, tx_hash: str | None = None):
        super().__init__(
            f"Payment for invoice {invoice_id} was not recognised by the seller",
            details={"invoice_id": invoice_id, "tx_hash": tx_hash},
        )
        self.invoice_id = invoice_id
        self.tx_hash = tx_hash


class NegotiationFailed(TrufflePayError):
    """No price could be agreed (e.g. budget below the seller floor)."""

    code = "NegotiationFailed"
    http_status = 422


class GenerationFailed(TrufflePayError):
    """Content generation failed after payment. The buyer may retry for free."""

    code = "GenerationFailed"
    http_status = 502
    retryable = True


_BY_CODE: dict[str, type[TrufflePayError]] = {
    cls.code: cls
    for cls in (
        ValidationError,
        UnknownInvoice,
        InsufficientFunds,
        LedgerUnavailable,
        PaymentNotRecognized,
        NegotiationFailed,
        GenerationFailed,
    )
}


def error_from_payload(payload: dict[str, Any]) -> TrufflePayError:
    """Rebuild a protocol error from its wire form ``{"error", "message", "details"}``."""
    cls = _BY_CODE.get(payload.get("error", ""), TrufflePayError)
    message = payload.get("message") or payload.get("error") or "Unknown error"
    details = payload.get("details")
    invoice_id = details.get("invoice_id", "") if isinstance(details, dict) else ""

    if cls is UnknownInvoice:
        return UnknownInvoice(invoice_id)
    if cls is PaymentNotRecognized:
        return PaymentNotRecognized(invoice_id, (details or {}).get("tx_hash"))
    return cls(message, details=details)
