from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, Mapping, Optional, Protocol

from pydantic import BaseModel
from sqlalchemy import Column, DateTime, MetaData, String, Table, Text, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from fxledger.errors import RateStoreError, ValidationError
from fxledger.models import RateSnapshot, coerce_timestamp, normalize_currency

logger = logging.getLogger(__name__)

FRESHNESS_WINDOW = timedelta(hours=1)

metadata = MetaData()

exchange_rate_cache = Table(
    "exchange_rate_cache",
    metadata,
    Column("base", String(3), primary_key=True),
    Column("rates", Text, nullable=False),
    Column("last_updated", DateTime(timezone=True), nullable=False),
)


class CachedRateRecord(BaseModel):
    base: str
    rates: Dict[str, Decimal]
    last_updated: datetime

    def to_snapshot(self) -> RateSnapshot:
        return RateSnapshot(
            base_currency=self.base,
            rates=self.rates,
            last_updated=self.last_updated,
        )


class RateStore(Protocol):
    """Durable key-value storage for rate records, keyed by base currency.

    Implementations raise :class:`RateStoreError` when the backing store
    fails and return ``None`` for an unknown base.
    """

    def load(self, base: str) -> Optional[CachedRateRecord]:
        ...

    def save(self, record: CachedRateRecord) -> None:
        ...


class InMemoryRateStore:
    def __init__(self) -> None:
        self._records: dict[str, CachedRateRecord] = {}

    def load(self, base: str) -> Optional[CachedRateRecord]:
        return self._records.get(base)

    def save(self, record: CachedRateRecord) -> None:
        self._records[record.base] = record


class SqlRateStore:
    """Rate records in a SQL table, one row per base currency."""

    def __init__(self, engine: Engine, create_tables: bool = True) -> None:
        self.engine = engine
        if create_tables:
            metadata.create_all(engine)

    def load(self, base: str) -> Optional[CachedRateRecord]:
        stmt = select(exchange_rate_cache).where(exchange_rate_cache.c.base == base)
        try:
            with self.engine.begin() as conn:
                row = conn.execute(stmt).mappings().first()
        except SQLAlchemyError as exc:
            raise RateStoreError(f"Failed to read cached rates for {base}") from exc
        if row is None:
            return None
        try:
            return CachedRateRecord(
                base=row["base"],
                rates=json.loads(row["rates"]),
                last_updated=coerce_timestamp(row["last_updated"]),
            )
        except (TypeError, ValueError) as exc:
            raise RateStoreError(f"Corrupt cached rates for {base}") from exc

    def save(self, record: CachedRateRecord) -> None:
        values = {
            "rates": json.dumps({code: str(rate) for code, rate in record.rates.items()}),
            "last_updated": record.last_updated.astimezone(timezone.utc),
        }
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(exchange_rate_cache)
                    .where(exchange_rate_cache.c.base == record.base)
                    .values(**values)
                )
                if result.rowcount == 0:
                    conn.execute(insert(exchange_rate_cache).values(base=record.base, **values))
        except SQLAlchemyError as exc:
            raise RateStoreError(f"Failed to write cached rates for {record.base}") from exc


class RateCache:
    """Last fetched rate table per base currency, with a freshness check."""

    def __init__(
        self,
        store: Optional[RateStore] = None,
        freshness_window: timedelta = FRESHNESS_WINDOW,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store if store is not None else InMemoryRateStore()
        self.freshness_window = freshness_window
        self.clock = clock or _utcnow

    def get(self, base: str) -> Optional[RateSnapshot]:
        record = self.store.load(normalize_currency(base))
        if record is None:
            return None
        try:
            return record.to_snapshot()
        except ValidationError as exc:
            raise RateStoreError(f"Invalid cached rates for {record.base}") from exc

    def put(self, base: str, rates: Mapping[str, Decimal], last_updated: datetime) -> None:
        normalized_base = normalize_currency(base)
        record = CachedRateRecord(
            base=normalized_base,
            rates=dict(rates),
            last_updated=coerce_timestamp(last_updated),
        )
        try:
            self.store.save(record)
        except RateStoreError:
            logger.exception("Could not cache rates for %s", normalized_base)

    def is_fresh(self, snapshot: Optional[RateSnapshot], now: Optional[datetime] = None) -> bool:
        if snapshot is None:
            return False
        current = coerce_timestamp(now) if now is not None else self.clock()
        return current - snapshot.last_updated < self.freshness_window


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
