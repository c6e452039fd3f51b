from __future__ import annotations


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate provider cannot fetch live rates."""


class NetworkError(RateProviderUnavailable):
    """The rate source could not be reached."""


class ApiError(RateProviderUnavailable):
    """The rate source answered, but with a failure."""

    def __init__(self, message: str, status: int | None = None, error_type: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.error_type = error_type


class RateStoreError(RuntimeError):
    """Raised when the durable rate store cannot be read."""


class ValidationError(ValueError):
    """Malformed ledger input (transactions, accounts, currencies, periods)."""


class MissingRateWarning(UserWarning):
    """A currency was missing from the rate table and converted 1:1."""

    def __init__(self, source_currency: str, target_currency: str, missing: tuple[str, ...]) -> None:
        super().__init__(
            f"Missing rate for {', '.join(missing)}; "
            f"converting {source_currency} to {target_currency} at 1:1"
        )
        self.source_currency = source_currency
        self.target_currency = target_currency
        self.missing = missing
