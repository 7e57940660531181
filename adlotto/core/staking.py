# adlotto/core/staking.py
"""
Stake & yield ledger.

Principal sits in the pool (``staked_balance``) and is always returned in
full; yield is simple daily interest paid out of the treasury yield reserve.
Every entry point checks all of its preconditions before the first mutation.
"""
from __future__ import annotations
from typing import Optional
import logging

from .accounts import credit, debit, require_balance
from .errors import (
    InsufficientReserve, InvalidAmount, NotAdmin, NotOwner, NothingToClaim, StakeOutOfBounds,
    UnknownEntity,
)
from .state import Accounts, StakePool, StakePosition, Treasury, hold
from .treasury import STAKING, withdraw_yield

logger = logging.getLogger(__name__)

BPS = 10_000
RATE_SCALE = 100
DAYS_PER_YEAR = 365


def compute_yield(position: StakePosition, apy_bps: int, epoch_now: int) -> int:
    if epoch_now <= position.last_claim_epoch:
        return 0
    elapsed = epoch_now - position.last_claim_epoch
    daily_rate = apy_bps * RATE_SCALE // DAYS_PER_YEAR
    # one truncating division at the end; reordering changes the rounding
    return position.amount * daily_rate * elapsed // (BPS * RATE_SCALE)


def position_of(pool: StakePool, position_id: str) -> StakePosition:
    pos = pool.positions.get(position_id)
    if pos is None:
        raise UnknownEntity(f"no stake position {position_id}")
    return pos


def voting_power(pool: StakePool, position_id: str) -> int:
    with pool.lock():
        return position_of(pool, position_id).amount


def pool_consistent(pool: StakePool) -> bool:
    with pool.lock():
        live = sum(p.amount for p in pool.positions.values())
        return pool.total_staked == live == pool.staked_balance


def check_stake(pool: StakePool, acc: Accounts, owner: str, amount: int, extra: int = 0):
    """Raise unless `owner` may stake `amount` (plus `extra` spent alongside)."""
    rules = pool.rules
    if not (rules.min_stake <= amount <= rules.max_stake):
        raise StakeOutOfBounds(
            f"stake {amount} outside [{rules.min_stake}, {rules.max_stake}]")
    require_balance(acc, owner, amount + extra)


def open_position(pool: StakePool, acc: Accounts, owner: str, amount: int, now_ms: int,
                  linked_participant_id: Optional[str] = None) -> StakePosition:
    """Commit step of a stake; callers must have run check_stake under the same locks."""
    epoch_now = pool.rules.epoch_of(now_ms)
    debit(acc, owner, amount)
    pos = StakePosition(position_id=pool.new_position_id(), owner=owner, amount=amount,
                        epoch_staked=epoch_now, last_claim_epoch=epoch_now,
                        linked_participant_id=linked_participant_id)
    pool.positions[pos.position_id] = pos
    pool.total_staked += amount
    pool.staked_balance += amount
    pool.events.emit("Staked", now_ms, position_id=pos.position_id, owner=owner,
                     amount=amount, epoch=epoch_now, linked_participant_id=linked_participant_id)
    return pos


def stake(pool: StakePool, acc: Accounts, owner: str, amount: int, now_ms: int,
          linked_participant_id: Optional[str] = None) -> str:
    with hold(pool, acc):
        check_stake(pool, acc, owner, amount)
        pos = open_position(pool, acc, owner, amount, now_ms, linked_participant_id)
    logger.debug("staked %s: %s -> %d", pos.position_id, owner, amount)
    return pos.position_id


def _owned(pool: StakePool, position_id: str, caller: str) -> StakePosition:
    pos = position_of(pool, position_id)
    if pos.owner != caller:
        raise NotOwner(f"{caller} does not own {position_id}")
    return pos


def _require_reserve(tr: Treasury, amount: int):
    if amount > tr.yield_reserve:
        raise InsufficientReserve(f"yield reserve {tr.yield_reserve} < {amount}")


def claim_rewards(pool: StakePool, tr: Treasury, acc: Accounts, position_id: str,
                  caller: str, now_ms: int) -> int:
    with hold(pool, tr, acc):
        pos = _owned(pool, position_id, caller)
        epoch_now = pool.rules.epoch_of(now_ms)
        earned = compute_yield(pos, pool.apy_rate_bps, epoch_now)
        total = earned + pos.advertiser_yield_claimable
        if total <= 0:
            raise NothingToClaim(f"{position_id} has nothing to claim")
        _require_reserve(tr, total)

        withdraw_yield(tr, total, STAKING, now_ms)
        # credited rewards may have pushed last_claim_epoch past now
        pos.last_claim_epoch = max(pos.last_claim_epoch, epoch_now)
        pos.advertiser_yield_claimable = 0
        credit(acc, pos.owner, total)
        pool.events.emit("RewardsClaimed", now_ms, position_id=position_id, owner=pos.owner,
                         yield_amount=earned, amount=total, epoch=epoch_now)
    logger.debug("claimed %d on %s", total, position_id)
    return total


def unstake(pool: StakePool, tr: Treasury, acc: Accounts, position_id: str,
            caller: str, now_ms: int) -> int:
    with hold(pool, tr, acc):
        pos = _owned(pool, position_id, caller)
        epoch_now = pool.rules.epoch_of(now_ms)
        earned = compute_yield(pos, pool.apy_rate_bps, epoch_now)
        owed = earned + pos.advertiser_yield_claimable
        if owed > 0:
            _require_reserve(tr, owed)

        if owed > 0:
            withdraw_yield(tr, owed, STAKING, now_ms)
        pool.total_staked -= pos.amount
        pool.staked_balance -= pos.amount
        del pool.positions[position_id]
        payout = pos.amount + owed
        credit(acc, pos.owner, payout)
        pool.events.emit("Unstaked", now_ms, position_id=position_id, owner=pos.owner,
                         principal=pos.amount, yield_amount=owed, amount=payout)
    logger.debug("unstaked %s: principal=%d yield=%d", position_id, pos.amount, owed)
    return payout


def credit_advertiser_yield(pool: StakePool, position_id: str, amount: int, now_ms: int = 0):
    """
    Owe `amount` to the position holder, payable on the next claim or unstake.
    last_claim_epoch moves forward one epoch so the interval is not paid twice.
    """
    if amount < 0:
        raise InvalidAmount("credit must be non-negative")
    with pool.lock():
        pos = position_of(pool, position_id)
        pos.advertiser_yield_claimable += amount
        pos.last_claim_epoch += 1
        pool.events.emit("AdvertiserYieldCredited", now_ms, position_id=position_id,
                         amount=amount, claimable=pos.advertiser_yield_claimable)


def pending_yield(pool: StakePool, position_id: str, now_ms: int) -> int:
    """What a claim would pay right now."""
    with pool.lock():
        pos = position_of(pool, position_id)
        return (compute_yield(pos, pool.apy_rate_bps, pool.rules.epoch_of(now_ms))
                + pos.advertiser_yield_claimable)


def set_apy(pool: StakePool, apy_bps: int, caller: str):
    if apy_bps < 0:
        raise InvalidAmount("apy must be non-negative")
    with pool.lock():
        if caller != pool.admin:
            raise NotAdmin("only the pool admin may change the rate")
        pool.apy_rate_bps = apy_bps
