# adlotto/core/treasury.py
from __future__ import annotations
import logging

from .errors import InsufficientReserve, InvalidAmount, NotAdmin, NotAuthorized
from .events import EventLog
from .state import Rules, Treasury

logger = logging.getLogger(__name__)

# internal collaborators allowed to draw on the reserves
STAKING = "adlotto:staking"
VERIFICATION = "adlotto:verification"
VOTING = "adlotto:voting"


def create_treasury(rules: Rules, events: EventLog, admin: str) -> Treasury:
    tr = Treasury(rules, events, admin)
    tr.collaborators.update({STAKING, VERIFICATION, VOTING})
    return tr


def authorize(tr: Treasury, caller: str, collaborator: str):
    with tr.lock():
        if caller != tr.admin:
            raise NotAdmin("only the treasury admin may add collaborators")
        tr.collaborators.add(collaborator)


def _positive(amount: int):
    if amount <= 0:
        raise InvalidAmount(f"amount must be positive, got {amount}")


def deposit_yield(tr: Treasury, amount: int, now_ms: int = 0):
    _positive(amount)
    with tr.lock():
        tr.yield_reserve += amount
        tr.events.emit("YieldDeposited", now_ms, amount=amount, reserve=tr.yield_reserve)


def withdraw_yield(tr: Treasury, amount: int, caller: str, now_ms: int = 0) -> int:
    """Take `amount` out of the yield reserve; the caller owns the returned funds."""
    _positive(amount)
    with tr.lock():
        if caller not in tr.collaborators:
            raise NotAuthorized(f"{caller} may not withdraw yield")
        if amount > tr.yield_reserve:
            raise InsufficientReserve(f"yield reserve {tr.yield_reserve} < {amount}")
        tr.yield_reserve -= amount
        tr.events.emit("YieldWithdrawn", now_ms, amount=amount, by=caller, reserve=tr.yield_reserve)
        return amount


def deposit_voting_rewards(tr: Treasury, amount: int, now_ms: int = 0):
    _positive(amount)
    with tr.lock():
        tr.voting_reward_reserve += amount
        tr.events.emit("VotingRewardsDeposited", now_ms, amount=amount,
                       reserve=tr.voting_reward_reserve)


def release_voting_rewards(tr: Treasury, amount: int, caller: str):
    """Move `amount` from the voting-reward reserve into the yield reserve."""
    if amount <= 0: return
    with tr.lock():
        if caller not in tr.collaborators:
            raise NotAuthorized(f"{caller} may not release voting rewards")
        if amount > tr.voting_reward_reserve:
            raise InsufficientReserve(
                f"voting reward reserve {tr.voting_reward_reserve} < {amount}")
        tr.voting_reward_reserve -= amount
        tr.yield_reserve += amount


def collect_fee(tr: Treasury, amount: int, payer: str, now_ms: int = 0):
    if amount <= 0: return
    with tr.lock():
        tr.balance += amount
        tr.fees_collected += amount
        tr.events.emit("FeeCollected", now_ms, amount=amount, payer=payer)


def total_held(tr: Treasury) -> int:
    with tr.lock():
        return tr.balance + tr.yield_reserve + tr.voting_reward_reserve
