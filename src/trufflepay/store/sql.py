"""SQLAlchemy invoice store with optimistic concurrency on a version column."""

import asyncio
import json
from dataclasses import replace
from pathlib import Path

from sqlalchemy import Integer, String, Text, create_engine, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from trufflepay.models import Invoice


class Base(DeclarativeBase):
    pass


class InvoiceRow(Base):
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    state: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    data: Mapped[str] = mapped_column(Text, nullable=False)  # Invoice.to_dict() JSON


class SqlInvoiceStore:
    def __init__(self, url: str):
        connect_args = {}
        if url.startswith("sqlite:///"):
            Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
            connect_args["check_same_thread"] = False
        self.engine = create_engine(url, connect_args=connect_args)
        self.SessionLocal = sessionmaker(bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    async def get(self, invoice_id: str) -> Invoice | None:
        return await asyncio.to_thread(self._get, invoice_id)

    async def create(self, invoice: Invoice) -> bool:
        return await asyncio.to_thread(self._create, invoice)

    async def compare_and_swap(self, expected: Invoice, updated: Invoice) -> Invoice | None:
        return await asyncio.to_thread(self._compare_and_swap, expected, updated)

    async def list(self) -> list[Invoice]:
        return await asyncio.to_thread(self._list)

    def close(self) -> None:
        self.engine.dispose()

    def _get(self, invoice_id: str) -> Invoice | None:
        with self.SessionLocal() as session:
            row = session.get(InvoiceRow, invoice_id)
            return self._to_invoice(row) if row else None

    def _create(self, invoice: Invoice) -> bool:
        stored = replace(invoice, version=1)
        with self.SessionLocal() as session:
            session.add(
                InvoiceRow(
                    id=stored.id,
                    state=stored.state.value,
                    version=1,
                    data=json.dumps(stored.to_dict()),
                )
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
        return True

    def _compare_and_swap(self, expected: Invoice, updated: Invoice) -> Invoice | None:
        stored = replace(updated, version=expected.version + 1)
        stmt = (
            update(InvoiceRow)
            .where(InvoiceRow.id == expected.id, InvoiceRow.version == expected.version)
            .values(
                version=stored.version,
                state=stored.state.value,
                data=json.dumps(stored.to_dict()),
            )
        )
        with self.SessionLocal() as session:
            result = session.execute(stmt)
            session.commit()
            if result.rowcount != 1:
                return None
        return stored

    def _list(self) -> "list[Invoice]":
        with self.SessionLocal() as session:
            rows = session.scalars(select(InvoiceRow).order_by(InvoiceRow.id)).all()
            return [self._to_invoice(row) for row in rows]

    @staticmethod
    def _to_invoice(row: InvoiceRow) -> Invoice:
        invoice = Invoice.from_dict(json.loads(row.data))
        return replace(invoice, version=row.version)
