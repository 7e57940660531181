# adlotto/core/accounts.py
from __future__ import annotations

from .errors import InsufficientBalance
from .state import Accounts


def require_balance(acc: Accounts, acct: str, amount: int):
    bal = acc.balances.get(acct, 0)
    if bal < amount:
        raise InsufficientBalance(f"{acct} holds {bal}, needs {amount}")


def credit(acc: Accounts, acct: str, amount: int):
    if amount <= 0: return
    with acc.lock():
        acc.balances[acct] = acc.balances.get(acct, 0) + amount


def debit(acc: Accounts, acct: str, amount: int):
    if amount <= 0: return
    with acc.lock():
        require_balance(acc, acct, amount)
        acc.balances[acct] -= amount