from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from fxledger.errors import ValidationError

ISO_DATE_FORMAT = "%Y-%m-%d"


class TransactionType:
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    values = {INCOME, EXPENSE, TRANSFER}

    @classmethod
    def validate(cls, value: str) -> str:
        if not isinstance(value, str):
            raise ValidationError("Invalid transaction type.")
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValidationError(f"Invalid transaction type: {value!r}")
        return normalized


@dataclass(frozen=True)
class Account:
    id: Any
    currency: str
    initial_balance: int = 0
    is_archived: bool = False
    is_primary: bool = False
    name: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "currency", normalize_currency(self.currency))
        if not _is_minor_units(self.initial_balance):
            raise ValidationError("initial_balance must be an integer amount of minor units.")

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Account":
        """Build an account from an entity-store record (camelCase or snake_case keys)."""
        return cls(
            id=_pick(record, "id"),
            currency=_pick(record, "currency"),
            initial_balance=_pick(record, "initial_balance", "initialBalance", default=0) or 0,
            is_archived=bool(_pick(record, "is_archived", "isArchived", default=False)),
            is_primary=bool(_pick(record, "is_primary", "isPrimary", default=False)),
            name=_pick(record, "name", default=None),
        )


@dataclass(frozen=True)
class Transaction:
    id: Any
    type: str
    amount: int
    currency: str
    date: date
    account_id: Any
    to_account_id: Any = None
    category_id: Any = None
    exchange_rate: Optional[Decimal] = None
    exchange_rate_base: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", TransactionType.validate(self.type))
        if not _is_minor_units(self.amount) or self.amount < 0:
            raise ValidationError(
                f"Transaction {self.id!r}: amount must be a non-negative integer of minor units."
            )
        if not self.currency:
            raise ValidationError(f"Transaction {self.id!r}: currency is required.")
        object.__setattr__(self, "currency", normalize_currency(self.currency))
        object.__setattr__(self, "date", coerce_date(self.date))
        if self.account_id is None:
            raise ValidationError(f"Transaction {self.id!r}: account_id is required.")
        if self.type == TransactionType.TRANSFER:
            if self.to_account_id is None:
                raise ValidationError(f"Transfer {self.id!r} requires to_account_id.")
            if self.to_account_id == self.account_id:
                raise ValidationError(f"Transfer {self.id!r} must move money between two accounts.")
        elif self.to_account_id is not None:
            raise ValidationError(f"Only transfers may set to_account_id (transaction {self.id!r}).")
        if self.exchange_rate is not None:
            try:
                object.__setattr__(self, "exchange_rate", Decimal(str(self.exchange_rate)))
            except InvalidOperation as exc:
                raise ValidationError(f"Transaction {self.id!r}: invalid exchange_rate.") from exc
        if self.exchange_rate_base is not None:
            object.__setattr__(self, "exchange_rate_base", normalize_currency(self.exchange_rate_base))

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Transaction":
        """Build a transaction from an entity-store record (camelCase or snake_case keys)."""
        return cls(
            id=_pick(record, "id", default=None),
            type=_pick(record, "type"),
            amount=_pick(record, "amount"),
            currency=_pick(record, "currency", default=None),
            date=_pick(record, "date"),
            account_id=_pick(record, "account_id", "accountId", default=None),
            to_account_id=_pick(record, "to_account_id", "toAccountId", default=None),
            category_id=_pick(record, "category_id", "categoryId", default=None),
            exchange_rate=_pick(record, "exchange_rate", "exchangeRate", default=None),
            exchange_rate_base=_pick(record, "exchange_rate_base", "exchangeRateBase", default=None),
        )

    def touches(self, account_id: Any) -> bool:
        return self.account_id == account_id or self.to_account_id == account_id


@dataclass(frozen=True)
class RateSnapshot:
    base_currency: str
    rates: Mapping[str, Decimal] = field(default_factory=dict)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        base = normalize_currency(self.base_currency)
        object.__setattr__(self, "base_currency", base)
        object.__setattr__(self, "rates", coerce_rates(self.rates))
        object.__setattr__(self, "last_updated", coerce_timestamp(self.last_updated))


@dataclass(frozen=True)
class PeriodStats:
    income: int = 0
    expense: int = 0
    net: int = 0
    count: int = 0


def normalize_currency(value: str) -> str:
    if not isinstance(value, str):
        raise ValidationError("Currency must be a 3-letter ISO 4217 code.")
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValidationError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def coerce_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip()[:10], ISO_DATE_FORMAT).date()
        except ValueError as exc:
            raise ValidationError("Date must be in YYYY-MM-DD format.") from exc
    raise ValidationError(f"Unsupported date value: {value!r}")


def coerce_timestamp(value: datetime | str) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"Invalid timestamp: {value!r}") from exc
    if not isinstance(value, datetime):
        raise ValidationError(f"Unsupported timestamp value: {value!r}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def coerce_rates(rates: Mapping[str, Any]) -> dict[str, Decimal]:
    parsed: dict[str, Decimal] = {}
    for code, value in rates.items():
        try:
            rate = value if isinstance(value, Decimal) else Decimal(str(value))
        except InvalidOperation as exc:
            raise ValidationError(f"Rate for {code} must be a positive number.") from exc
        if not rate.is_finite() or rate <= 0:
            raise ValidationError(f"Rate for {code} must be a positive number.")
        parsed[normalize_currency(code)] = rate
    return parsed


def _is_minor_units(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _pick(record: Mapping[str, Any], *keys: str, **kwargs: Any) -> Any:
    for key in keys:
        if key in record:
            return record[key]
    if "default" in kwargs:
        return kwargs["default"]
    raise ValidationError(f"Record is missing required field {keys[0]!r}.")
