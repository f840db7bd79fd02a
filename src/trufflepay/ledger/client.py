"""
Ledger client used by both sides of the pay-gated protocol.

Wraps a ``SettlementLedger`` with timeouts, the allowance/approve/pay sequence
and the mapping from transport failures and reverts onto protocol errors.
"""

import asyncio
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Protocol

import structlog

from trufflepay.errors import (
    InsufficientFunds,
    LedgerUnavailable,
    UnknownInvoice,
    ValidationError,
)
from trufflepay.events import Event, EventSink, NullEventSink
from trufflepay.models import PaymentReceipt
from trufflepay.telemetry import tracer

from .encoding import (
    DEFAULT_DECIMALS,
    format_amount,
    from_base_units,
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

logger = structlog.get_logger(__name__)

_FUNDS_MARKERS = ("insufficient", "exceeds balance", "allowance")
_UNKNOWN_MARKERS = ("unknown invoice", "not found", "does not exist")


class PayableInvoice(Protocol):
    """Fields the client needs to pay an invoice (a 402 payload or an Invoice)."""

    @property
    def id(self) -> str: ...

    @property
    def amount(self) -> Decimal: ...

    @property
    def token(self) -> str: ...


class LedgerClient:
    """
    Sole gateway to settlement state.

    Responsibilities:
    - Bounded reads of invoice state (``LedgerUnavailable`` on timeout)
    - Invoice registration and seller withdrawal with finality waits
    - Buyer payment: allowance check, approve, pay, wait for both
    - Treating an "already paid" revert as success once re-read confirms it
    """

    def __init__(
        self,
        ledger: SettlementLedger,
        decimals: int = DEFAULT_DECIMALS,
        tx_timeout: float = 120.0,
        read_timeout: float = 10.0,
        sink: EventSink | None = None,
    ):
        self.ledger = ledger
        self.decimals = decimals
        self.tx_timeout = tx_timeout
        self.read_timeout = read_timeout
        self.sink = sink or NullEventSink()

    @property
    def reference(self) -> str:
        return self.ledger.get_reference()

    @property
    def seller_address(self) -> str:
        return self.ledger.get_seller_address()

    async def get_invoice(self, invoice_id: str) -> LedgerInvoice:
        validate_invoice_id(invoice_id)
        return await self._read(self.ledger.get_invoice(invoice_id), "invoices")

    async def is_paid(self, invoice_id: str) -> bool:
        return (await self.get_invoice(invoice_id)).paid

    async def balance(self, token: str, owner: str) -> Decimal:
        units = await self._read(self.ledger.balance_of(token, owner), "balanceOf")
        return self.to_decimal(units)

    async def create_invoice(self, invoice_id: str, token: str, amount: Decimal) -> str:
        """Register an invoice and wait for the transaction to finalise."""
        validate_invoice_id(invoice_id)
        units = to_base_units(amount, self.decimals)

        try:
            tx_hash = await self._write(
                self.ledger.create_invoice(invoice_id, token, units), "createInvoice"
            )

            async def registered() -> bool:
                return (await self.get_invoice(invoice_id)).exists

            await self._confirm(tx_hash, registered, invoice_id)
        except LedgerRevert as e:
            # A concurrent or earlier registration already landed
            existing = await self.get_invoice(invoice_id)
            if existing.exists:
                logger.info(
                    "ledger_invoice_already_registered",
                    invoice_id=invoice_id,
                    reason=e.reason,
                )
                return e.tx_hash or ""
            raise ValidationError(
                f"Ledger rejected invoice {invoice_id}: {e.reason}"
            ) from e

        logger.info(
            "ledger_invoice_created",
            invoice_id=invoice_id,
            amount=format_amount(amount),
            tx_hash=tx_hash,
        )
        return tx_hash

    async def pay_invoice(self, invoice: PayableInvoice, signer: Signer) -> PaymentReceipt:
        """
        Pay ``invoice`` from ``signer``.

        Sequence: read ledger state, approve the registry if the allowance is
        short, submit payment, wait for both transactions to finalise.
        """
        with tracer.start_as_current_span("ledger.pay_invoice") as span:
            span.set_attribute("invoice.id", invoice.id)
            receipt = await self._pay(invoice, signer)
            span.set_attribute("payment.already_paid", receipt.already_paid)
            return receipt

    async def _pay(self, invoice: PayableInvoice, signer: Signer) -> PaymentReceipt:
        invoice_id = validate_invoice_id(invoice.id)
        state = await self.get_invoice(invoice_id)

        if not state.exists:
            raise UnknownInvoice(invoice_id)
        if state.paid:
            logger.info("ledger_invoice_already_paid", invoice_id=invoice_id)
            return PaymentReceipt(success=True, tx_hash=None, already_paid=True)

        expected = to_base_units(invoice.amount, self.decimals)
        if state.amount > expected:
            raise ValidationError(
                "Ledger amount exceeds the quoted invoice amount",
                details={
                    "invoice_id": invoice_id,
                    "quoted": format_amount(invoice.amount),
                    "ledger": format_amount(from_base_units(state.amount, self.decimals)),
                },
            )

        token = state.token
        spender = self.ledger.get_reference()
        balance = await self._read(self.ledger.balance_of(token, signer.address), "balanceOf")
        if balance < state.amount:
            raise InsufficientFunds(
                f"Balance too low to pay invoice {invoice_id}",
                details={
                    "required": format_amount(from_base_units(state.amount, self.decimals)),
                    "available": format_amount(from_base_units(balance, self.decimals)),
                },
            )

        approve_tx: str | None = None
        current = await self._read(
            self.ledger.allowance(token, signer.address, spender), "allowance"
        )

        try:
            if current < state.amount:
                approve_tx = await self._write(
                    self.ledger.approve(token, signer, spender, state.amount), "approve"
                )
                logger.info(
                    "ledger_approve_submitted", invoice_id=invoice_id, tx_hash=approve_tx
                )

                async def approved() -> bool:
                    allowance = await self._read(
                        self.ledger.allowance(token, signer.address, spender), "allowance"
                    )
                    return allowance >= state.amount

                await self._confirm(approve_tx, approved, invoice_id)
            pay_tx = await self._write(
                self.ledger.pay_invoice(invoice_id, signer), "payInvoice"
            )
            self.sink.emit(
                Event("payment.submitted", {"invoice_id": invoice_id, "tx_hash": pay_tx})
            )
            await self._confirm(pay_tx, lambda: self.is_paid(invoice_id), invoice_id)
        except LedgerRevert as e:
            return await self._resolve_revert(invoice_id, e, approve_tx)

        logger.info("ledger_payment_confirmed", invoice_id=invoice_id, tx_hash=pay_tx)
        self.sink.emit(
            Event(
                "payment.confirmed",
                {
                    "invoice_id": invoice_id,
                    "tx_hash": pay_tx,
                    "amount": format_amount(invoice.amount),
                },
            )
        )
        return PaymentReceipt(success=True, tx_hash=pay_tx, approve_tx_hash=approve_tx)

    async def withdraw(self, invoice_id: str) -> str:
        validate_invoice_id(invoice_id)
        try:
            tx_hash = await self._write(self.ledger.withdraw(invoice_id), "withdraw")

            async def withdrawn() -> bool:
                return (await self.get_invoice(invoice_id)).amount == 0

            await self._confirm(tx_hash, withdrawn, invoice_id)
        except LedgerRevert as e:
            raise ValidationError(
                f"Ledger rejected withdrawal for {invoice_id}: {e.reason}",
                details={"invoice_id": invoice_id},
            ) from e
        logger.info("ledger_withdrawn", invoice_id=invoice_id, tx_hash=tx_hash)
        return tx_hash

    def to_decimal(self, units: int) -> Decimal:
        return from_base_units(units, self.decimals)

    # -- internals --------------------------------------------------------

    async def _resolve_revert(
        self, invoice_id: str, error: LedgerRevert, approve_tx: str | None
    ) -> PaymentReceipt:
        """Re-read the ledger once; a paid invoice means our goal is met."""
        logger.warning("ledger_payment_reverted", invoice_id=invoice_id, reason=error.reason)
        state = await self.get_invoice(invoice_id)
        if state.paid:
            logger.info("ledger_revert_resolved_as_paid", invoice_id=invoice_id)
            return PaymentReceipt(
                success=True,
                tx_hash=error.tx_hash,
                approve_tx_hash=approve_tx,
                already_paid=True,
            )

        reason = error.reason.lower()
        if not state.exists or any(marker in reason for marker in _UNKNOWN_MARKERS):
            raise UnknownInvoice(invoice_id) from error
        if any(marker in reason for marker in _FUNDS_MARKERS):
            raise InsufficientFunds(
                f"Ledger rejected payment for {invoice_id}: {error.reason}"
            ) from error
        raise LedgerUnavailable(
            f"Payment for {invoice_id} reverted: {error.reason}",
            details={"invoice_id": invoice_id},
        ) from error

    async def _read(self, coro, operation: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.read_timeout)
        except TimeoutError as e:
            logger.warning("ledger_read_timeout", operation=operation, timeout=self.read_timeout)
            raise LedgerUnavailable(f"Ledger {operation} timed out") from e
        except LedgerConnectionError as e:
            logger.warning("ledger_read_failed", operation=operation, error=str(e))
            raise LedgerUnavailable(f"Ledger {operation} failed: {e}") from e

    async def _write(self, coro, operation: str) -> str:
        try:
            return await asyncio.wait_for(coro, timeout=self.tx_timeout)
        except TimeoutError as e:
            raise LedgerUnavailable(f"Ledger {operation} broadcast timed out") from e
        except LedgerConnectionError as e:
            logger.warning("ledger_write_failed", operation=operation, error=str(e))
            raise LedgerUnavailable(f"Ledger {operation} failed: {e}") from e

    async def _confirm(
        self, tx_hash: str, landed: Callable[[], Awaitable[bool]], invoice_id: str
    ) -> None:
        """
        Wait for finality. On a timeout the ledger is re-queried: the
        transaction may have landed even though its receipt did not arrive.
        """
        try:
            await self._wait(tx_hash)
        except LedgerUnavailable as e:
            try:
                confirmed = await landed()
            except LedgerUnavailable:
                confirmed = False
            if not confirmed:
                raise LedgerUnavailable(
                    e.message, details={"invoice_id": invoice_id, "tx_hash": tx_hash}
                ) from e
            logger.info(
                "ledger_tx_confirmed_by_requery", invoice_id=invoice_id, tx_hash=tx_hash
            )

    async def _wait(self, tx_hash: str) -> TxReceipt:
        try:
            return await self.ledger.wait_for_receipt(tx_hash, timeout=self.tx_timeout)
        except TimeoutError as e:
            # The transaction may still land; callers must re-query before concluding
            raise LedgerUnavailable(
                f"Transaction {tx_hash} not final after {self.tx_timeout}s",
                details={"tx_hash": tx_hash},
            ) from e
        except LedgerConnectionError as e:
            raise LedgerUnavailable(str(e), details={"tx_hash": tx_hash}) from e
