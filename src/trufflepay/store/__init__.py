"""Local invoice caches. The ledger remains the source of truth."""

from trufflepay.config import StoreSettings

from .interfaces import InvoiceStore
from .json_file import JsonInvoiceStore
from .memory import MemoryInvoiceStore
from .sql import SqlInvoiceStore


def build_store(settings: StoreSettings) -> InvoiceStore:
    if settings.backend == "memory":
        return MemoryInvoiceStore()
    if settings.backend == "sql":
        return SqlInvoiceStore(settings.sql_url)
    return JsonInvoiceStore(settings.json_path)


__all__ = [
    "InvoiceStore",
    "JsonInvoiceStore",
    "MemoryInvoiceStore",
    "SqlInvoiceStore",
    "build_store",
]
