"""
Deterministic in-process settlement ledger.

Mirrors the PaymentRegistry contract rules (at-most-once payment per invoice,
seller-only withdrawal, ERC-20 allowance pull) so the full purchase flow can
run without a chain. Failure knobs let tests simulate outages, slow reads,
delayed finality and reverts.
"""

import asyncio
import hashlib
from collections import Counter, defaultdict
from dataclasses import dataclass

import structlog

from .interfaces import (
    ZERO_ADDRESS,
    LedgerConnectionError,
    LedgerInvoice,
    LedgerRevert,
    Signer,
    TxReceipt,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LocalSigner:
    """Address-only signer accepted by the in-memory ledger."""

    address: str


@dataclass
class _Record:
    seller: str
    token: str
    amount: int
    paid: bool = False
    payer: str | None = None


class InMemoryLedger:
    def __init__(
        self,
        seller_address: str = "0xSeller",
        reference: str = "0xRegistry",
        finality_delay: float = 0.0,
        read_delay: float = 0.0,
    ):
        self.seller_address = seller_address
        self.reference = reference
        self.finality_delay = finality_delay
        self.read_delay = read_delay

        self.available = True
        self.fail_next_reads = 0
        self.fail_next_writes = 0

        self.invoices: dict[str, _Record] = {}
        self.balances: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self.allowances: dict[tuple[str, str, str], int] = defaultdict(int)
        self.calls: Counter[str] = Counter()
        self.receipts: dict[str, TxReceipt] = {}
        self._tx_counter = 0
        self._block = 0

    # -- test helpers -----------------------------------------------------

    def mint(self, token: str, owner: str, amount: int) -> None:
        self.balances[token][owner] += amount

    def force_paid(self, invoice_id: str, payer: str = "0xSomeoneElse") -> None:
        """Mark an invoice paid out of band, as if another buyer paid it."""
        record = self.invoices[invoice_id]
        record.paid = True
        record.payer = payer

    # -- SettlementLedger -------------------------------------------------

    def get_reference(self) -> str:
        return self.reference

    def get_seller_address(self) -> str:
        return self.seller_address

    async def get_invoice(self, invoice_id: str) -> LedgerInvoice:
        self.calls["invoices"] += 1
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        self._check_read()

        record = self.invoices.get(invoice_id)
        if record is None:
            return LedgerInvoice(invoice_id, ZERO_ADDRESS, ZERO_ADDRESS, 0, False)
        return LedgerInvoice(
            invoice_id, record.seller, record.token, record.amount, record.paid
        )

    async def create_invoice(self, invoice_id: str, token: str, amount: int) -> str:
        self.calls["createInvoice"] += 1
        self._check_write()
        if invoice_id in self.invoices:
            raise LedgerRevert("invoice exists")
        if amount <= 0:
            raise LedgerRevert("amount must be positive")

        self.invoices[invoice_id] = _Record(self.seller_address, token, amount)
        return self._record_tx("createInvoice", invoice_id)

    async def pay_invoice(self, invoice_id: str, signer: Signer) -> str:
        self.calls["payInvoice"] += 1
        self._check_write()
        record = self.invoices.get(invoice_id)
        if record is None:
            raise LedgerRevert("unknown invoice")
        if record.paid:
            raise LedgerRevert("already paid")

        payer = signer.address
        key = (record.token, payer, self.reference)
        if self.allowances[key] < record.amount:
            raise LedgerRevert("ERC20: insufficient allowance")
        if self.balances[record.token][payer] < record.amount:
            raise LedgerRevert("ERC20: transfer amount exceeds balance")

        self.allowances[key] -= record.amount
        self.balances[record.token][payer] -= record.amount
        self.balances[record.token][self.reference] += record.amount
        record.paid = True
        record.payer = payer
        return self._record_tx("payInvoice", invoice_id)

    async def withdraw(self, invoice_id: str) -> str:
        self.calls["withdraw"] += 1
        self._check_write()
        record = self.invoices.get(invoice_id)
        if record is None:
            raise LedgerRevert("unknown invoice")
        if not record.paid:
            raise LedgerRevert("not paid")
        if record.amount == 0:
            raise LedgerRevert("already withdrawn")

        self.balances[record.token][self.reference] -= record.amount
        self.balances[record.token][record.seller] += record.amount
        record.amount = 0
        return self._record_tx("withdraw", invoice_id)

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        self.calls["allowance"] += 1
        self._check_read()
        return self.allowances[(token, owner, spender)]

    async def balance_of(self, token: str, owner: str) -> int:
        self.calls["balanceOf"] += 1
        self._check_read()
        return self.balances[token][owner]

    async def approve(self, token: str, signer: Signer, spender: str, amount: int) -> str:
        self.calls["approve"] += 1
        self._check_write()
        self.allowances[(token, signer.address, spender)] = amount
        return self._record_tx("approve", f"{signer.address}:{spender}")

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        if self.finality_delay:
            await asyncio.wait_for(asyncio.sleep(self.finality_delay), timeout=timeout)
        try:
            return self.receipts[tx_hash]
        except KeyError:
            raise LedgerConnectionError(f"unknown transaction {tx_hash}") from None

    # -- internals --------------------------------------------------------

    def _check_read(self) -> None:
        if not self.available:
            raise LedgerConnectionError("ledger unavailable")
        if self.fail_next_reads > 0:
            self.fail_next_reads -= 1
            raise LedgerConnectionError("simulated read failure")

    def _check_write(self) -> None:
        if not self.available:
            raise LedgerConnectionError("ledger unavailable")
        if self.fail_next_writes > 0:
            self.fail_next_writes -= 1
            raise LedgerConnectionError("simulated write failure")

    def _record_tx(self, method: str, subject: str) -> str:
        self._tx_counter += 1
        self._block += 1
        digest = hashlib.sha256(f"{self._tx_counter}:{method}:{subject}".encode())
        tx_hash = "0x" + digest.hexdigest()
        self.receipts[tx_hash] = TxReceipt(tx_hash=tx_hash, block_number=self._block)
        logger.debug("memory_ledger_tx", method=method, subject=subject, tx_hash=tx_hash)
        return tx_hash
