"""
Protocol-based interface for settlement ledgers.

The gateway and buyer only talk to the ledger through this port, so the live
EVM registry and the deterministic in-memory ledger are interchangeable.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class LedgerInvoice:
    """
    On-ledger view of an invoice, as returned by ``invoices(bytes32)``.

    ``amount`` is in token base units. A zero seller means the id was never
    registered; a zero amount on a paid invoice means it was withdrawn.
    """

    invoice_id: str
    seller: str
    token: str
    amount: int
    paid: bool

    @property
    def exists(self) -> bool:
        return bool(self.seller) and self.seller.lower() != ZERO_ADDRESS


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    block_number: int | None = None


class LedgerRevert(Exception):
    """The ledger rejected a transaction. ``reason`` carries the revert string."""

    def __init__(self, reason: str, tx_hash: str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.tx_hash = tx_hash


class LedgerConnectionError(Exception):
    """Transport-level failure reaching the ledger."""


@runtime_checkable
class Signer(Protocol):
    """Anything that owns an address and can authorise ledger transactions."""

    @property
    def address(self) -> str: ...


@runtime_checkable
class SettlementLedger(Protocol):
    """
    Capability set of the settlement ledger: create, query, pay, withdraw,
    plus the token allowance calls needed before ``pay_invoice``.

    Write methods return once the transaction is broadcast; callers use
    ``wait_for_receipt`` to wait for finality. Implementations raise
    ``LedgerRevert`` for rejected transactions and ``LedgerConnectionError``
    for transport failures.
    """

    def get_reference(self) -> str:
        """Returns the registry (settlement contract) address."""
        ...

    def get_seller_address(self) -> str:
        """Returns the address invoices are created from."""
        ...

    async def get_invoice(self, invoice_id: str) -> LedgerInvoice: ...

    async def create_invoice(self, invoice_id: str, token: str, amount: int) -> str: ...

    async def pay_invoice(self, invoice_id: str, signer: Signer) -> str: ...

    async def withdraw(self, invoice_id: str) -> str: ...

    async def allowance(self, token: str, owner: str, spender: str) -> int: ...

    async def balance_of(self, token: str, owner: str) -> int: ...

    async def approve(self, token: str, signer: Signer, spender: str, amount: int) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt: ...
