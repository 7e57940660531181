"""Shared fixtures: a deployment on a simulated clock with scripted randomness."""

from __future__ import annotations

from typing import Iterable, List

import pytest

from adlotto.core.apply import Deployment, apply_tx, create_deployment
from adlotto.core.entropy import SimClock
from adlotto.core.state import Rules

DAY_MS = 86_400_000


class ScriptedRandomness:
    """Returns the queued values (mod n) in order and records every request."""

    def __init__(self, values: Iterable[int] = ()) -> None:
        self.values: List[int] = list(values)
        self.requests: List[int] = []

    def queue(self, *values: int) -> None:
        self.values.extend(values)

    def randint(self, n: int) -> int:
        self.requests.append(n)
        value = self.values.pop(0) if self.values else 0
        return value % n


@pytest.fixture()
def rules() -> Rules:
    return Rules(
        min_stake=100,
        max_stake=1_000_000_000,
        apy_bps=10_000,
        payout_per_viewer=10,
        payout_cap=50,
    )


@pytest.fixture()
def rng() -> ScriptedRandomness:
    return ScriptedRandomness()


@pytest.fixture()
def clock() -> SimClock:
    return SimClock(start_ms=0)


@pytest.fixture()
def dep(rules, rng, clock) -> Deployment:
    return create_deployment(rules, admin="admin", rng=rng, clock=clock)


@pytest.fixture()
def fund(dep):
    def _fund(acct: str, amount: int) -> None:
        receipt = apply_tx(dep, {"type": "Fund", "acct": acct, "amount": amount})
        assert receipt.ok

    return _fund


@pytest.fixture()
def reserve(dep, fund):
    def _reserve(amount: int) -> None:
        fund("admin", amount)
        receipt = apply_tx(dep, {"type": "DepositYield", "funder": "admin", "amount": amount})
        assert receipt.ok

    return _reserve
