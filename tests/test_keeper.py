import time

import pytest

from adlotto.core import registry, staking, verification, voting
from adlotto.core.apply import apply_tx
from adlotto.roles.keeper import Keeper


@pytest.fixture()
def ads(dep, fund):
    out = []
    for who in ("adv1", "adv2"):
        fund(who, 300)
        out.append(registry.submit(dep.registry, dep.pool, dep.treasury, dep.accounts,
                                   who, 300, f"cid-{who}", 0))
    return out


def test_cycle_without_ads_is_recorded_as_failure(dep):
    keeper = Keeper(dep)
    assert keeper.run_cycle() is False
    assert keeper.stats.total_runs == 1
    assert keeper.stats.failed_runs == 1
    assert keeper.stats.last_error_code == "ENoActiveAds"
    assert dep.config.current_epoch == 0


def test_cycle_picks_rotates_and_finalizes(dep, ads, rng):
    rng.queue(1)
    keeper = Keeper(dep)
    assert keeper.run_cycle() is True

    assert dep.config.current_epoch == 1
    assert dep.config.pending_winner_id is None
    assert dep.config.latest_confirmed_winner_id == ads[1]
    assert dep.session.active_participant_id == ads[1]
    assert keeper.stats.winners_picked == 1
    assert keeper.stats.epochs_finalized == 1
    assert keeper.stats.last_error_code is None


def test_leftover_pending_winner_is_finalized_first(dep, ads, rng):
    assert apply_tx(dep, {"type": "PickWinner"}).ok
    keeper = Keeper(dep)
    assert keeper.run_cycle() is True
    assert dep.config.current_epoch == 2
    assert keeper.stats.epochs_finalized == 2
    assert [w.winner_id for w in dep.config.past_winners] == [ads[0], ads[0]]


def test_reserve_shortfall_keeps_winner_pending_until_topped_up(dep, ads, reserve):
    keeper = Keeper(dep)
    assert keeper.run_cycle()
    target = dep.session.active_participant_id
    verification.register_attendance(dep.session, target, "viewer", 0)

    assert keeper.run_cycle() is False
    assert keeper.stats.last_error_code == "EInsufficientReserve"
    assert dep.config.pending_winner_id is not None
    assert dep.config.current_epoch == 1

    reserve(100)
    assert keeper.run_cycle() is True
    assert dep.accounts.balance_of("viewer") == 10
    assert dep.config.current_epoch == 3
    assert keeper.stats.winners_picked == 3
    assert keeper.stats.failed_runs == 1
    assert keeper.stats.successful_runs == 2


def test_keeper_runs_the_voting_calendar(dep, ads, fund):
    fund("admin", 500)
    assert apply_tx(dep, {"type": "DepositVotingRewards", "funder": "admin", "amount": 500}).ok
    fund("voter", 1_000)
    pid = staking.stake(dep.pool, dep.accounts, "voter", 1_000, 0)

    keeper = Keeper(dep, manage_voting=True, voting_reward_pool=200)
    keeper.ensure_voting_open()
    assert voting.is_voting_open(dep.book, 0, 0)
    voting.cast_vote(dep.book, dep.registry, dep.pool, "voter", ads[1], pid, 0, 0)

    assert keeper.run_cycle() is True
    assert not dep.book.epochs[0].is_active
    assert dep.book.records[0].reward_per_vote == 200 * 10_000 // 1_000
    assert dep.book.records[0].distributed
    assert dep.treasury.voting_reward_reserve == 300
    assert 1 in dep.book.epochs and dep.book.epochs[1].is_active


def test_keeper_thread_stops_cleanly(dep, ads):
    keeper = Keeper(dep, interval_sec=0.01)
    keeper.start()
    deadline = time.time() + 5.0
    while dep.config.current_epoch < 2 and time.time() < deadline:
        time.sleep(0.01)
    keeper.stop()
    keeper.join(timeout=2.0)
    assert not keeper.is_alive()
    assert dep.config.current_epoch >= 2
