from __future__ import annotations

import pytest

from adlotto.core import staking
from adlotto.core.errors import (
    InsufficientBalance, InsufficientReserve, NotOwner, NothingToClaim, StakeOutOfBounds,
)
from adlotto.core.state import StakePosition

DAY_MS = 86_400_000


def _position(amount: int, last: int) -> StakePosition:
    return StakePosition(position_id="p", owner="o", amount=amount, epoch_staked=last,
                         last_claim_epoch=last)


def test_compute_yield_reference_value():
    pos = _position(1_000_000, 0)
    assert staking.compute_yield(pos, 10_000, 1) == 2739


def test_compute_yield_zero_until_an_epoch_has_passed():
    pos = _position(1_000_000, 5)
    assert staking.compute_yield(pos, 10_000, 5) == 0
    assert staking.compute_yield(pos, 10_000, 3) == 0


def test_compute_yield_truncates_in_reference_order():
    # 1000 bps -> daily rate floor(100000 / 365) = 273
    pos = _position(999, 0)
    assert staking.compute_yield(pos, 1_000, 3) == 999 * 273 * 3 // 1_000_000


def test_compute_yield_is_non_decreasing():
    pos = _position(123_456, 2)
    values = [staking.compute_yield(pos, 750, e) for e in range(0, 400)]
    assert values == sorted(values)


def test_stake_outside_bounds_changes_nothing(dep, fund):
    fund("alice", 1_000)
    with pytest.raises(StakeOutOfBounds):
        staking.stake(dep.pool, dep.accounts, "alice", 50, 0)
    assert dep.pool.total_staked == 0
    assert dep.accounts.balance_of("alice") == 1_000
    assert not dep.pool.positions


def test_stake_requires_balance(dep, fund):
    fund("alice", 150)
    with pytest.raises(InsufficientBalance):
        staking.stake(dep.pool, dep.accounts, "alice", 200, 0)
    assert dep.pool.staked_balance == 0


def test_stake_then_unstake_same_epoch_returns_principal(dep, fund):
    fund("alice", 5_000)
    pid = staking.stake(dep.pool, dep.accounts, "alice", 5_000, 1_000)
    assert dep.pool.total_staked == dep.pool.staked_balance == 5_000
    assert dep.accounts.balance_of("alice") == 0

    payout = staking.unstake(dep.pool, dep.treasury, dep.accounts, pid, "alice", 2_000)
    assert payout == 5_000
    assert dep.accounts.balance_of("alice") == 5_000
    assert dep.pool.total_staked == 0
    assert staking.pool_consistent(dep.pool)


def test_unstake_pays_principal_plus_yield(dep, fund, reserve):
    reserve(10_000)
    fund("alice", 1_000_000)
    pid = staking.stake(dep.pool, dep.accounts, "alice", 1_000_000, 0)

    payout = staking.unstake(dep.pool, dep.treasury, dep.accounts, pid, "alice", DAY_MS)
    assert payout == 1_002_739
    assert dep.treasury.yield_reserve == 10_000 - 2_739
    assert pid not in dep.pool.positions


def test_unstake_fails_loudly_when_reserve_is_short(dep, fund, reserve):
    reserve(100)
    fund("alice", 1_000_000)
    pid = staking.stake(dep.pool, dep.accounts, "alice", 1_000_000, 0)

    with pytest.raises(InsufficientReserve):
        staking.unstake(dep.pool, dep.treasury, dep.accounts, pid, "alice", DAY_MS)
    assert pid in dep.pool.positions
    assert dep.pool.total_staked == 1_000_000
    assert dep.treasury.yield_reserve == 100
    assert dep.accounts.balance_of("alice") == 0


def test_claim_rewards_resets_claim_epoch(dep, fund, reserve):
    reserve(50_000)
    fund("alice", 1_000_000)
    pid = staking.stake(dep.pool, dep.accounts, "alice", 1_000_000, 0)

    with pytest.raises(NothingToClaim):
        staking.claim_rewards(dep.pool, dep.treasury, dep.accounts, pid, "alice", 10)

    paid = staking.claim_rewards(dep.pool, dep.treasury, dep.accounts, pid, "alice", 2 * DAY_MS)
    assert paid == 2 * 2739
    assert dep.pool.positions[pid].last_claim_epoch == 2
    assert dep.accounts.balance_of("alice") == paid

    with pytest.raises(NothingToClaim):
        staking.claim_rewards(dep.pool, dep.treasury, dep.accounts, pid, "alice", 2 * DAY_MS + 5)


def test_only_the_owner_can_claim_or_unstake(dep, fund, reserve):
    reserve(50_000)
    fund("alice", 1_000)
    pid = staking.stake(dep.pool, dep.accounts, "alice", 1_000, 0)
    with pytest.raises(NotOwner):
        staking.claim_rewards(dep.pool, dep.treasury, dep.accounts, pid, "mallory", 5 * DAY_MS)
    with pytest.raises(NotOwner):
        staking.unstake(dep.pool, dep.treasury, dep.accounts, pid, "mallory", 5 * DAY_MS)
    assert dep.pool.positions[pid].owner == "alice"


def test_credit_advertiser_yield_skips_one_interval(dep, fund, reserve):
    reserve(50_000)
    fund("alice", 1_000_000)
    pid = staking.stake(dep.pool, dep.accounts, "alice", 1_000_000, 0)

    staking.credit_advertiser_yield(dep.pool, pid, 500)
    pos = dep.pool.positions[pid]
    assert pos.advertiser_yield_claimable == 500
    assert pos.last_claim_epoch == 1

    # epoch 1 was covered by the credit, so only the credit is owed
    assert staking.pending_yield(dep.pool, pid, DAY_MS) == 500
    paid = staking.claim_rewards(dep.pool, dep.treasury, dep.accounts, pid, "alice", DAY_MS)
    assert paid == 500
    assert pos.advertiser_yield_claimable == 0


def test_unstake_includes_credited_yield(dep, fund, reserve):
    reserve(1_000)
    fund("alice", 2_000)
    pid = staking.stake(dep.pool, dep.accounts, "alice", 2_000, 0)
    staking.credit_advertiser_yield(dep.pool, pid, 300)

    assert staking.unstake(dep.pool, dep.treasury, dep.accounts, pid, "alice", 0) == 2_300
    assert dep.treasury.yield_reserve == 700


def test_total_staked_tracks_live_positions(dep, fund):
    for i in range(6):
        fund(f"u{i}", 1_000 * (i + 1))
    ids = [staking.stake(dep.pool, dep.accounts, f"u{i}", 1_000 * (i + 1), 0) for i in range(6)]
    for i in (1, 3, 4):
        staking.unstake(dep.pool, dep.treasury, dep.accounts, ids[i], f"u{i}", 0)
        assert staking.pool_consistent(dep.pool)
    assert dep.pool.total_staked == 1_000 + 3_000 + 6_000


def test_set_apy_is_admin_only(dep):
    from adlotto.core.errors import NotAdmin
    with pytest.raises(NotAdmin):
        staking.set_apy(dep.pool, 1, "alice")
    staking.set_apy(dep.pool, 365, "admin")
    assert dep.pool.apy_rate_bps == 365
    # 365 bps -> daily rate 100
    assert staking.compute_yield(_position(1_000_000, 0), dep.pool.apy_rate_bps, 1) == 100
