"""
JSON-file invoice store.

All mutations go through a single writer lock and land on disk through a
temp file plus ``os.replace``, so readers never observe a partial write.
"""

import asyncio
import json
import os
import tempfile
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from trufflepay.models import Invoice

logger = structlog.get_logger(__name__)


class JsonInvoiceStore:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self._cache: dict[str, Invoice] | None = None

    async def get(self, invoice_id: str) -> Invoice | None:
        records = await self._records()
        return records.get(invoice_id)

    async def create(self, invoice: Invoice) -> bool:
        async with self._lock:
            records = await self._records()
            if invoice.id in records:
                return False
            updated = dict(records)
            updated[invoice.id] = replace(invoice, version=1)
            await self._persist(updated)
            return True

    async def compare_and_swap(self, expected: Invoice, updated: Invoice) -> Invoice | None:
        async with self._lock:
            records = await self._records()
            current = records.get(expected.id)
            if current is None or current.version != expected.version:
                return None
            stored = replace(updated, version=current.version + 1)
            snapshot = dict(records)
            snapshot[expected.id] = stored
            await self._persist(snapshot)
            return stored

    async def list(self) -> list[Invoice]:
        return list((await self._records()).values())

    async def _records(self) -> dict[str, Invoice]:
        if self._cache is None:
            loaded = await asyncio.to_thread(self._load)
            # A concurrent writer may have populated the cache meanwhile
            if self._cache is None:
                self._cache = loaded
        return self._cache

    async def _persist(self, records: dict[str, Invoice]) -> None:
        payload = {invoice_id: inv.to_dict() for invoice_id, inv in records.items()}
        await asyncio.to_thread(self._write_atomic, payload)
        self._cache = records

    def _load(self) -> dict[str, Invoice]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            return {key: Invoice.from_dict(value) for key, value in raw.items()}
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            quarantine = self.path.with_name(
                f"{self.path.name}.corrupt-{datetime.now(UTC):%Y%m%d%H%M%S}"
            )
            os.replace(self.path, quarantine)
            logger.error(
                "invoice_store_corrupted",
                path=str(self.path),
                quarantined_to=str(quarantine),
                error=str(e),
            )
            # Records are re-derived from the ledger on demand
            return {}

    def _write_atomic(self, payload: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2, sort_keys=True)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
