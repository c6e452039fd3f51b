from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PayloadValidationError

from fxledger.currency_conversion import RateTable, cross_rate
from fxledger.errors import ApiError, NetworkError, RateProviderUnavailable, RateStoreError, ValidationError
from fxledger.models import RateSnapshot, normalize_currency
from fxledger.rate_cache import RateCache
from fxledger.settings import DEFAULT_RATE_API_URL

logger = logging.getLogger(__name__)


class RateApiResponse(BaseModel):
    """Body of ``GET <rate-api>/<BASE>``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    result: str
    base_code: Optional[str] = None
    rates: Optional[Dict[str, float]] = None
    error_type: Optional[str] = Field(default=None, alias="error-type")


class RateTransport(Protocol):
    async def get_json(self, url: str) -> Tuple[int, Any]:
        """Return the HTTP status and decoded JSON body (``None`` if undecodable).

        Transport-level failures raise :class:`NetworkError`.
        """
        ...


class UrllibTransport:
    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout

    async def get_json(self, url: str) -> Tuple[int, Any]:
        return await asyncio.to_thread(self._get_json, url)

    def _get_json(self, url: str) -> Tuple[int, Any]:
        request = Request(url, headers={"Accept": "application/json"})
        options = {} if self.timeout is None else {"timeout": self.timeout}
        try:
            with urlopen(request, **options) as response:
                status = response.status
                body = response.read()
        except HTTPError as exc:
            return exc.code, None
        except (URLError, TimeoutError, OSError) as exc:
            raise NetworkError(f"Rate source unreachable: {url}") from exc
        try:
            return status, json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return status, None


@dataclass(frozen=True)
class RatesResult:
    base_currency: str
    rates: Mapping[str, Decimal]
    last_updated: datetime
    from_cache: bool
    stale: bool = False

    @property
    def table(self) -> RateTable:
        return RateTable.from_mapping(self.rates, base=self.base_currency)

    @classmethod
    def from_snapshot(cls, snapshot: RateSnapshot, from_cache: bool, stale: bool = False) -> "RatesResult":
        return cls(
            base_currency=snapshot.base_currency,
            rates=snapshot.rates,
            last_updated=snapshot.last_updated,
            from_cache=from_cache,
            stale=stale,
        )


class RateProvider:
    """Live exchange rates with a cached, stale-tolerant fallback.

    Concurrent calls for the same base are not coordinated: each may fetch
    and overwrite the cache, and the last writer wins.
    """

    def __init__(
        self,
        cache: RateCache,
        transport: Optional[RateTransport] = None,
        api_url: str = DEFAULT_RATE_API_URL,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.cache = cache
        self.transport = transport if transport is not None else UrllibTransport()
        self.api_url = api_url.rstrip("/")
        self.clock = clock or cache.clock

    async def fetch_live(self, base: str) -> RateSnapshot:
        normalized_base = normalize_currency(base)
        url = f"{self.api_url}/{normalized_base}"
        logger.info("Fetching exchange rates for %s", normalized_base)
        try:
            status, payload = await self.transport.get_json(url)
        except NetworkError:
            raise
        except OSError as exc:
            raise NetworkError(f"Rate source unreachable: {url}") from exc

        if status == 404:
            raise ApiError(f"No rate data for {normalized_base}", status=status)
        if not 200 <= status < 300:
            raise ApiError(f"Rate source returned HTTP {status}", status=status)

        snapshot = self._parse_payload(normalized_base, status, payload)
        self.cache.put(snapshot.base_currency, snapshot.rates, snapshot.last_updated)
        return snapshot

    async def get_rates(self, base: str, force_refresh: bool = False) -> RatesResult:
        normalized_base = normalize_currency(base)
        if not force_refresh:
            cached = self._read_cache(normalized_base)
            if cached is not None and self.cache.is_fresh(cached, self.clock()):
                return RatesResult.from_snapshot(cached, from_cache=True)

        try:
            snapshot = await self.fetch_live(normalized_base)
        except RateProviderUnavailable as exc:
            cached = self._read_cache(normalized_base)
            if cached is None:
                raise
            logger.warning(
                "Using stale cached rates for %s (updated %s): %s",
                normalized_base,
                cached.last_updated.isoformat(),
                exc,
            )
            return RatesResult.from_snapshot(cached, from_cache=True, stale=True)
        return RatesResult.from_snapshot(snapshot, from_cache=False)

    async def force_refresh(self, base: str) -> RatesResult:
        return await self.get_rates(base, force_refresh=True)

    async def get_rate(self, source_currency: str, target_currency: str, base: str = "USD") -> Decimal:
        if normalize_currency(source_currency) == normalize_currency(target_currency):
            return Decimal("1")
        result = await self.get_rates(base)
        return cross_rate(source_currency, target_currency, result.table)

    def _read_cache(self, base: str) -> Optional[RateSnapshot]:
        try:
            return self.cache.get(base)
        except RateStoreError:
            logger.exception("Error reading cached rates for %s", base)
            return None

    def _parse_payload(self, base: str, status: int, payload: Any) -> RateSnapshot:
        if not isinstance(payload, dict):
            raise ApiError("Rate source returned a malformed response", status=status)
        try:
            response = RateApiResponse.model_validate(payload)
        except PayloadValidationError as exc:
            raise ApiError("Rate source returned a malformed response", status=status) from exc

        if response.result != "success":
            error_type = response.error_type or "unknown-error"
            raise ApiError(f"Rate source reported failure: {error_type}", status=status, error_type=error_type)
        if not response.rates:
            raise ApiError("Rate source response is missing rates", status=status)

        rates = dict(response.rates)
        rates.setdefault(base, Decimal("1"))
        try:
            return RateSnapshot(base_currency=base, rates=rates, last_updated=self.clock())
        except ValidationError as exc:
            raise ApiError(f"Rate source returned invalid rates: {exc}", status=status) from exc
