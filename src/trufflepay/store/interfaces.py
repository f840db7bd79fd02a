from typing import Protocol, runtime_checkable

from trufflepay.models import Invoice


@runtime_checkable
class InvoiceStore(Protocol):
    """
    Local cache of invoice records keyed by invoice id.

    Never authoritative for payment state. Writes are atomic per id:
    ``create`` inserts only if absent and ``compare_and_swap`` only replaces a
    record whose ``version`` still matches what the caller read.
    """

    async def get(self, invoice_id: str) -> Invoice | None: ...

    async def create(self, invoice: Invoice) -> bool:
        """Insert ``invoice``. Returns False if the id already exists."""
        ...

    async def compare_and_swap(self, expected: Invoice, updated: Invoice) -> Invoice | None:
        """Store ``updated`` if the current version equals ``expected.version``.

        Returns the stored record (with its new version) or None on conflict.
        """
        ...

    async def list(self) -> list[Invoice]: ...
