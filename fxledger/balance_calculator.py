from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from fxledger.currency_conversion import RateTable, convert_amount, convert_signed
from fxledger.models import Account, Transaction, TransactionType, normalize_currency

AccountLike = Union[Account, Mapping[str, Any]]
TransactionLike = Union[Transaction, Mapping[str, Any]]


def balance_of(
    account: AccountLike,
    transactions: Iterable[TransactionLike],
    rates: Any = None,
) -> int:
    """Replay every transaction touching ``account`` over its opening balance.

    Transfer legs are converted independently into each account's currency,
    so the two sides of a cross-currency transfer need not mirror each other.
    """
    acct = coerce_account(account)
    table = RateTable.coerce(rates)
    return _replay(acct, coerce_transactions(transactions), table)


def account_balances(
    accounts: Iterable[AccountLike],
    transactions: Iterable[TransactionLike],
    rates: Any = None,
    include_archived: bool = False,
) -> Dict[Any, int]:
    table = RateTable.coerce(rates)
    txns = coerce_transactions(transactions)
    balances: Dict[Any, int] = {}
    for account in accounts:
        acct = coerce_account(account)
        if acct.is_archived and not include_archived:
            continue
        balances[acct.id] = _replay(acct, txns, table)
    return balances


def total_balance(
    accounts: Iterable[AccountLike],
    transactions: Iterable[TransactionLike],
    target_currency: str,
    rates: Any = None,
    include_archived: bool = False,
) -> int:
    target = normalize_currency(target_currency)
    table = RateTable.coerce(rates)
    txns = coerce_transactions(transactions)
    total = 0
    for account in accounts:
        acct = coerce_account(account)
        if acct.is_archived and not include_archived:
            continue
        total += convert_signed(_replay(acct, txns, table), acct.currency, target, table)
    return total


def primary_account(accounts: Iterable[AccountLike]) -> Optional[Account]:
    active = [acct for acct in map(coerce_account, accounts) if not acct.is_archived]
    for acct in active:
        if acct.is_primary:
            return acct
    return active[0] if active else None


def coerce_account(account: AccountLike) -> Account:
    if isinstance(account, Account):
        return account
    return Account.from_record(account)


def coerce_transactions(transactions: Iterable[TransactionLike]) -> List[Transaction]:
    return [
        txn if isinstance(txn, Transaction) else Transaction.from_record(txn)
        for txn in transactions
    ]


def _replay(account: Account, transactions: Iterable[Transaction], table: RateTable) -> int:
    balance = account.initial_balance
    for txn in transactions:
        if not txn.touches(account.id):
            continue
        if txn.type == TransactionType.TRANSFER:
            if txn.account_id == account.id:
                balance -= convert_amount(txn.amount, txn.currency, account.currency, table)
            if txn.to_account_id == account.id:
                balance += convert_amount(txn.amount, txn.currency, account.currency, table)
        elif txn.type == TransactionType.INCOME:
            balance += convert_amount(txn.amount, txn.currency, account.currency, table)
        elif txn.type == TransactionType.EXPENSE:
            balance -= convert_amount(txn.amount, txn.currency, account.currency, table)
    return balance
