"""Seller-side sweep of settled invoices into the seller's wallet."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog

from trufflepay.errors import TrufflePayError
from trufflepay.events import Event, EventSink, NullEventSink
from trufflepay.ledger import LedgerClient, format_amount
from trufflepay.store import InvoiceStore

logger = structlog.get_logger(__name__)


@dataclass
class WithdrawalSummary:
    withdrawn: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)
    total: Decimal = Decimal(0)

    @property
    def count(self) -> int:
        return len(self.withdrawn)

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "total": format_amount(self.total) if self.total else "0",
            "withdrawn": self.withdrawn,
            "skipped": self.skipped,
            "failed": self.failed,
        }


async def withdraw_earnings(
    store: InvoiceStore, ledger: LedgerClient, sink: EventSink | None = None
) -> WithdrawalSummary:
    """
    Withdraw every paid invoice owned by this seller.

    The ledger is re-read for each invoice. Unpaid invoices, invoices owned by
    another seller and already-withdrawn ones (zero amount) are skipped.
    Per-invoice failures are recorded in the summary and do not stop the sweep.
    """
    sink = sink or NullEventSink()
    summary = WithdrawalSummary()
    seller = ledger.seller_address.lower()

    for invoice in await store.list():
        try:
            state = await ledger.get_invoice(invoice.id)
            if not state.paid:
                summary.skipped.append({"invoiceId": invoice.id, "reason": "unpaid"})
                continue
            if state.seller.lower() != seller:
                summary.skipped.append({"invoiceId": invoice.id, "reason": "other seller"})
                continue
            if state.amount == 0:
                summary.skipped.append({"invoiceId": invoice.id, "reason": "already withdrawn"})
                continue

            amount = ledger.to_decimal(state.amount)
            tx_hash = await ledger.withdraw(invoice.id)
        except TrufflePayError as e:
            logger.warning("withdraw_failed", invoice_id=invoice.id, error=e.message)
            summary.failed.append({"invoiceId": invoice.id, "error": e.code, "message": e.message})
            continue

        summary.total += amount
        summary.withdrawn.append(
            {"invoiceId": invoice.id, "amount": format_amount(amount), "txHash": tx_hash}
        )
        sink.emit(
            Event(
                "earnings.withdrawn",
                {"invoice_id": invoice.id, "amount": format_amount(amount), "tx_hash": tx_hash},
            )
        )

    logger.info(
        "earnings_withdrawn",
        count=summary.count,
        total=str(summary.total),
        skipped=len(summary.skipped),
        failed=len(summary.failed),
    )
    return summary
