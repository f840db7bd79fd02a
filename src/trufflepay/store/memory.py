import asyncio
from dataclasses import replace

from trufflepay.models import Invoice


class MemoryInvoiceStore:
    def __init__(self) -> None:
        self._records: dict[str, Invoice] = {}
        self._lock = asyncio.Lock()

    async def get(self, invoice_id: str) -> Invoice | None:
        return self._records.get(invoice_id)

    async def create(self, invoice: Invoice) -> bool:
        async with self._lock:
            if invoice.id in self._records:
                return False
            self._records[invoice.id] = replace(invoice, version=1)
            return True

    async def compare_and_swap(self, expected: Invoice, updated: Invoice) -> Invoice | None:
        async with self._lock:
            current = self._records.get(expected.id)
            if current is None or current.version != expected.version:
                return None
            stored = replace(updated, version=current.version + 1)
            self._records[expected.id] = stored
            return stored

    async def list(self) -> list[Invoice]:
        return list(self._records.values())
