from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional

from fxledger.errors import MissingRateWarning, ValidationError
from fxledger.models import coerce_rates, normalize_currency

logger = logging.getLogger(__name__)

ONE = Decimal("1")
MINOR_UNIT = Decimal("1")


@dataclass(frozen=True)
class RateTable:
    """Exchange rates expressed relative to a single base currency.

    ``rates[code]`` is how many units of ``code`` one unit of the base buys,
    so the base itself maps to 1. Every other accepted shape is normalised
    into this one by :meth:`coerce`.
    """

    rates: Mapping[str, Decimal] = field(default_factory=dict)
    base: Optional[str] = None

    def __post_init__(self) -> None:
        rates = coerce_rates(self.rates)
        base = normalize_currency(self.base) if self.base else None
        if base is not None:
            rates.setdefault(base, ONE)
        object.__setattr__(self, "rates", rates)
        object.__setattr__(self, "base", base)

    def __contains__(self, currency: str) -> bool:
        return currency in self.rates

    def __len__(self) -> int:
        return len(self.rates)

    def get(self, currency: str) -> Optional[Decimal]:
        return self.rates.get(currency)

    @classmethod
    def from_mapping(cls, rates: Mapping[str, Any], base: Optional[str] = None) -> "RateTable":
        return cls(rates=rates, base=base)

    @classmethod
    def from_legacy_pairs(cls, pairs: Iterable[Any]) -> "RateTable":
        """Normalise the legacy ``[{currency, rate}]`` list.

        Legacy rates give the value of one unit of ``currency`` in base terms
        (converted as ``amount * rate[from] / rate[to]``), the inverse of the
        base-relative map.
        """
        rates: dict[str, Decimal] = {}
        for pair in pairs:
            if isinstance(pair, Mapping):
                currency, raw_rate = pair.get("currency"), pair.get("rate")
            else:
                currency, raw_rate = pair
            try:
                rate = Decimal(str(raw_rate))
            except InvalidOperation as exc:
                raise ValidationError(f"Legacy rate for {currency} is not a number.") from exc
            if not rate.is_finite() or rate <= 0:
                raise ValidationError(f"Legacy rate for {currency} must be a positive number.")
            rates[normalize_currency(currency)] = ONE / rate
        return cls(rates=rates)

    @classmethod
    def coerce(cls, value: Any) -> "RateTable":
        if value is None:
            return cls()
        if isinstance(value, RateTable):
            return value
        if isinstance(value, Mapping):
            return cls.from_mapping(value)
        if isinstance(value, (list, tuple)):
            return cls.from_legacy_pairs(value)
        table = getattr(value, "table", None)
        if isinstance(table, RateTable):
            return table
        rates = getattr(value, "rates", None)
        if isinstance(rates, Mapping):
            base = getattr(value, "base_currency", None) or getattr(value, "base", None)
            return cls.from_mapping(rates, base=base)
        raise ValidationError(f"Unsupported rate table: {type(value).__name__}")


def convert_amount(
    amount: int,
    source_currency: str,
    target_currency: str,
    rates: RateTable | Mapping[str, Any] | Iterable[Any] | None,
) -> int:
    """Convert an amount of minor units from one currency into another.

    The result is rounded half-up on the exact decimal quotient. A currency
    missing from ``rates`` degrades to a 1:1 conversion and is reported
    through :class:`MissingRateWarning` and the module logger.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amount must be an integer number of minor units.")
    if amount < 0:
        raise ValidationError("Amount must not be negative.")
    normalized_source = normalize_currency(source_currency)
    normalized_target = normalize_currency(target_currency)

    if amount == 0 or normalized_source == normalized_target:
        return amount

    table = RateTable.coerce(rates)
    source_rate = table.get(normalized_source)
    target_rate = table.get(normalized_target)
    if source_rate is None or target_rate is None:
        _report_missing_rate(normalized_source, normalized_target, table)
        return amount

    converted = Decimal(amount) * target_rate / source_rate
    return int(converted.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP))


def convert_signed(
    amount: int,
    source_currency: str,
    target_currency: str,
    rates: RateTable | Mapping[str, Any] | Iterable[Any] | None,
) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amount must be an integer number of minor units.")
    converted = convert_amount(abs(amount), source_currency, target_currency, rates)
    return -converted if amount < 0 else converted


def cross_rate(
    source_currency: str,
    target_currency: str,
    rates: RateTable | Mapping[str, Any] | Iterable[Any] | None,
) -> Decimal:
    """Units of ``target_currency`` bought by one unit of ``source_currency``."""
    normalized_source = normalize_currency(source_currency)
    normalized_target = normalize_currency(target_currency)
    if normalized_source == normalized_target:
        return ONE

    table = RateTable.coerce(rates)
    source_rate = table.get(normalized_source)
    target_rate = table.get(normalized_target)
    if source_rate is None or target_rate is None:
        _report_missing_rate(normalized_source, normalized_target, table)
        return ONE
    return target_rate / source_rate


def _report_missing_rate(source_currency: str, target_currency: str, table: RateTable) -> None:
    missing = tuple(code for code in (source_currency, target_currency) if code not in table)
    warning = MissingRateWarning(source_currency, target_currency, missing)
    logger.warning(
        "%s",
        warning,
        extra={
            "event": "fx.missing_rate",
            "source_currency": source_currency,
            "target_currency": target_currency,
            "missing_currencies": missing,
        },
    )
    warnings.warn(warning, stacklevel=3)
