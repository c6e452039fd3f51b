import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Union

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import create_engine

from fxledger.balance_calculator import account_balances, total_balance
from fxledger.errors import RateProviderUnavailable, ValidationError
from fxledger.models import Account, Transaction, normalize_currency
from fxledger.period_aggregator import compare_periods, period_range, period_stats, previous_period_range
from fxledger.rate_cache import RateCache, SqlRateStore, metadata
from fxledger.rate_provider import RateProvider, RatesResult, UrllibTransport
from fxledger.settings import Settings, configure_logging, load_settings

logger = logging.getLogger(__name__)

EntityId = Union[int, str]


class RatesResponse(BaseModel):
    base: str
    rates: dict[str, Decimal]
    last_updated: datetime
    from_cache: bool
    stale: bool


class AccountPayload(BaseModel):
    id: EntityId
    currency: str
    initial_balance: int = 0
    is_archived: bool = False
    is_primary: bool = False
    name: str | None = None


class TransactionPayload(BaseModel):
    id: EntityId | None = None
    type: str
    amount: int
    currency: str
    date: date
    account_id: EntityId
    to_account_id: EntityId | None = None
    category_id: EntityId | None = None


class BalancesPayload(BaseModel):
    accounts: list[AccountPayload]
    transactions: list[TransactionPayload] = []
    target_currency: str | None = None
    include_archived: bool = False


class BalancesResponse(BaseModel):
    currency: str
    balances: dict[str, int]
    total: int
    rates_stale: bool


class StatsPayload(BaseModel):
    transactions: list[TransactionPayload] = []
    preset: str = "month"
    today: date | None = None
    start: date | None = None
    end: date | None = None
    target_currency: str | None = None


class PeriodStatsResponse(BaseModel):
    start: date
    end: date
    income: int
    expense: int
    net: int
    count: int


class StatsResponse(BaseModel):
    currency: str
    current: PeriodStatsResponse
    previous: PeriodStatsResponse
    income_change: float
    expense_change: float
    net_change: float
    rates_stale: bool


def build_provider(settings: Settings) -> tuple[RateProvider, Any]:
    connect_args = {}
    if settings.database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    engine = create_engine(settings.database_url, connect_args=connect_args)
    cache = RateCache(SqlRateStore(engine, create_tables=False))
    transport = UrllibTransport(timeout=settings.fetch_timeout)
    return RateProvider(cache, transport=transport, api_url=settings.rate_api_url), engine


def create_app(settings: Optional[Settings] = None, provider: Optional[RateProvider] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    engine = None
    if provider is None:
        provider, engine = build_provider(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if engine is not None:
            metadata.create_all(engine)
        yield
        if engine is not None:
            engine.dispose()

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.rate_provider = provider
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/rates/{base}", response_model=RatesResponse)
    async def get_rates(base: str, request: Request) -> RatesResponse:
        result = await load_rates(request, base)
        return to_rates_response(result)

    @app.post("/rates/{base}/refresh", response_model=RatesResponse)
    async def refresh_rates(base: str, request: Request) -> RatesResponse:
        result = await load_rates(request, base, force_refresh=True)
        return to_rates_response(result)

    @app.post("/balances", response_model=BalancesResponse)
    async def balances(payload: BalancesPayload, request: Request) -> BalancesResponse:
        target = resolve_currency(payload.target_currency, request)
        result = await load_rates(request, target)
        try:
            accounts = [Account(**item.model_dump()) for item in payload.accounts]
            transactions = [Transaction(**item.model_dump()) for item in payload.transactions]
            by_account = account_balances(
                accounts, transactions, result.table, include_archived=payload.include_archived
            )
            total = total_balance(
                accounts, transactions, target, result.table, include_archived=payload.include_archived
            )
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return BalancesResponse(
            currency=target,
            balances={str(account_id): value for account_id, value in by_account.items()},
            total=total,
            rates_stale=result.stale,
        )

    @app.post("/stats", response_model=StatsResponse)
    async def stats(payload: StatsPayload, request: Request) -> StatsResponse:
        target = resolve_currency(payload.target_currency, request)
        result = await load_rates(request, target)
        try:
            transactions = [Transaction(**item.model_dump()) for item in payload.transactions]
            start, end = period_range(
                payload.preset,
                payload.today or date.today(),
                custom_start=payload.start,
                custom_end=payload.end,
            )
            previous_start, previous_end = previous_period_range(payload.preset, start, end)
            current = period_stats(transactions, start, end, target, result.table)
            previous = period_stats(transactions, previous_start, previous_end, target, result.table)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        comparison = compare_periods(current, previous)
        return StatsResponse(
            currency=target,
            current=PeriodStatsResponse(start=start, end=end, **asdict(current)),
            previous=PeriodStatsResponse(start=previous_start, end=previous_end, **asdict(previous)),
            income_change=comparison.income_change,
            expense_change=comparison.expense_change,
            net_change=comparison.net_change,
            rates_stale=result.stale,
        )

    return app


async def load_rates(request: Request, base: str, force_refresh: bool = False) -> RatesResult:
    provider: RateProvider = request.app.state.rate_provider
    try:
        return await provider.get_rates(normalize_currency(base), force_refresh=force_refresh)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RateProviderUnavailable as exc:
        logger.error("Exchange rates unavailable for %s: %s", base, exc)
        raise HTTPException(status_code=503, detail="Exchange rates unavailable.") from exc


def resolve_currency(value: str | None, request: Request) -> str:
    if not value:
        return request.app.state.settings.default_currency
    try:
        return normalize_currency(value)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def to_rates_response(result: RatesResult) -> RatesResponse:
    return RatesResponse(
        base=result.base_currency,
        rates=dict(result.rates),
        last_updated=result.last_updated,
        from_cache=result.from_cache,
        stale=result.stale,
    )


app = create_app()
