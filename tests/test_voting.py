import pytest

from adlotto.core import registry, staking, voting
from adlotto.core.errors import (
    AdInactive, AlreadyVoted, EpochMismatch, InsufficientReserve, NotAdmin, NotOwner,
    RewardAlreadyClaimed, RewardsAlreadyDistributed, UnknownEntity, VotingAlreadyOpen, VotingClosed,
    VotingStillOpen,
)
from adlotto.core.apply import apply_tx

DAY_MS = 86_400_000


@pytest.fixture()
def ballot(dep, fund):
    """Two ads, two staked voters and voting open for epoch 0."""
    for who in ("adv1", "adv2"):
        fund(who, 500)
    ads = [registry.submit(dep.registry, dep.pool, dep.treasury, dep.accounts, w, 500, f"cid-{w}", 0)
           for w in ("adv1", "adv2")]
    fund("alice", 3_000)
    fund("bob", 1_000)
    positions = {
        "alice": staking.stake(dep.pool, dep.accounts, "alice", 3_000, 0),
        "bob": staking.stake(dep.pool, dep.accounts, "bob", 1_000, 0),
    }
    voting.open_voting(dep.book, 0, 0, "admin")
    return ads, positions


def test_open_voting_is_admin_only_and_once(dep):
    with pytest.raises(NotAdmin):
        voting.open_voting(dep.book, 0, 0, "alice")
    ep = voting.open_voting(dep.book, 0, 100, "admin", duration_ms=1_000)
    assert (ep.start_ms, ep.end_ms) == (100, 1_100)
    with pytest.raises(VotingAlreadyOpen):
        voting.open_voting(dep.book, 0, 200, "admin")

    assert voting.is_voting_open(dep.book, 0, 500)
    assert not voting.is_voting_open(dep.book, 0, 1_100)
    assert not voting.is_voting_open(dep.book, 1, 500)


def test_cast_vote_tallies_stake_power(dep, ballot):
    ads, pos = ballot
    vid = voting.cast_vote(dep.book, dep.registry, dep.pool, "alice", ads[1], pos["alice"], 0, 10)

    vote = dep.book.votes[vid]
    assert vote.voting_power == 3_000
    assert dep.book.records[0].total_votes == 3_000
    assert dep.book.epochs[0].votes_by_participant == {ads[1]: 3_000}
    assert dep.registry.ads[ads[1]].total_votes_received == 3_000


def test_second_vote_in_epoch_is_rejected(dep, ballot):
    ads, pos = ballot
    voting.cast_vote(dep.book, dep.registry, dep.pool, "alice", ads[0], pos["alice"], 0, 10)
    with pytest.raises(AlreadyVoted):
        voting.cast_vote(dep.book, dep.registry, dep.pool, "alice", ads[1], pos["alice"], 0, 20)
    assert dep.book.records[0].total_votes == 3_000
    assert dep.registry.ads[ads[1]].total_votes_received == 0


def test_vote_preconditions(dep, ballot):
    ads, pos = ballot
    with pytest.raises(NotOwner):
        voting.cast_vote(dep.book, dep.registry, dep.pool, "bob", ads[0], pos["alice"], 0, 10)
    with pytest.raises(VotingClosed):
        voting.cast_vote(dep.book, dep.registry, dep.pool, "bob", ads[0], pos["bob"], 0, DAY_MS)
    with pytest.raises(VotingClosed):
        voting.cast_vote(dep.book, dep.registry, dep.pool, "bob", ads[0], pos["bob"], 1, 10)

    registry.deactivate(dep.registry, ads[0], "adv1", 0)
    with pytest.raises(AdInactive):
        voting.cast_vote(dep.book, dep.registry, dep.pool, "bob", ads[0], pos["bob"], 0, 10)
    assert not dep.book.votes


def test_closed_epoch_rejects_votes(dep, ballot):
    ads, pos = ballot
    voting.close_voting(dep.book, 0, "admin", 5)
    with pytest.raises(VotingClosed):
        voting.cast_vote(dep.book, dep.registry, dep.pool, "bob", ads[0], pos["bob"], 0, 10)
    with pytest.raises(VotingClosed):
        voting.close_voting(dep.book, 0, "admin", 6)


def test_rewards_are_proportional_and_claimed_once(dep, fund, ballot):
    ads, pos = ballot
    fund("admin", 1_000)
    assert apply_tx(dep, {"type": "DepositVotingRewards", "funder": "admin", "amount": 1_000}).ok

    va = voting.cast_vote(dep.book, dep.registry, dep.pool, "alice", ads[0], pos["alice"], 0, 10)
    vb = voting.cast_vote(dep.book, dep.registry, dep.pool, "bob", ads[1], pos["bob"], 0, 10)

    voting.close_voting(dep.book, 0, "admin", 20)
    rpv = voting.distribute_voting_rewards(dep.book, dep.treasury, 0, 1_000, "admin")
    assert rpv == 1_000 * 10_000 // 4_000
    assert dep.treasury.voting_reward_reserve == 0
    assert dep.treasury.yield_reserve == 1_000

    assert voting.claim_voting_reward(dep.book, dep.pool, va, 0, "alice") == 3_000 * rpv // 10_000
    assert voting.claim_voting_reward(dep.book, dep.pool, vb, 0, "bob") == 250
    with pytest.raises(RewardAlreadyClaimed):
        voting.claim_voting_reward(dep.book, dep.pool, va, 0, "alice")

    alice_pos = dep.pool.positions[pos["alice"]]
    assert alice_pos.advertiser_yield_claimable == 750
    assert alice_pos.last_claim_epoch == 1


def test_distribute_needs_admin_and_reserve(dep, ballot):
    ads, pos = ballot
    voting.cast_vote(dep.book, dep.registry, dep.pool, "bob", ads[0], pos["bob"], 0, 10)
    voting.close_voting(dep.book, 0, "admin", 20)
    with pytest.raises(NotAdmin):
        voting.distribute_voting_rewards(dep.book, dep.treasury, 0, 10, "bob")
    with pytest.raises(InsufficientReserve):
        voting.distribute_voting_rewards(dep.book, dep.treasury, 0, 10, "admin")
    assert dep.book.records[0].reward_per_vote == 0


def test_distribute_without_votes_is_a_no_op(dep, ballot):
    voting.close_voting(dep.book, 0, "admin", 5)
    assert voting.distribute_voting_rewards(dep.book, dep.treasury, 0, 0, "admin") == 0
    with pytest.raises(UnknownEntity):
        voting.distribute_voting_rewards(dep.book, dep.treasury, 7, 50, "admin")
    assert 7 not in dep.book.records
    assert dep.events.find("VotingRewardsDistributed") == []


def test_distribution_requires_closed_voting(dep, fund, ballot):
    ads, pos = ballot
    fund("admin", 1_000)
    apply_tx(dep, {"type": "DepositVotingRewards", "funder": "admin", "amount": 1_000})
    voting.cast_vote(dep.book, dep.registry, dep.pool, "bob", ads[0], pos["bob"], 0, 10)

    with pytest.raises(VotingStillOpen):
        voting.distribute_voting_rewards(dep.book, dep.treasury, 0, 500, "admin")
    assert dep.book.records[0].reward_per_vote == 0
    assert dep.treasury.voting_reward_reserve == 1_000

    # a late voter cannot dilute a fixed reward once voting is closed
    voting.close_voting(dep.book, 0, "admin", 20)
    with pytest.raises(VotingClosed):
        voting.cast_vote(dep.book, dep.registry, dep.pool, "alice", ads[0], pos["alice"], 0, 30)
    assert voting.distribute_voting_rewards(dep.book, dep.treasury, 0, 500, "admin") == 5_000


def test_epoch_is_distributed_once(dep, fund, ballot):
    ads, pos = ballot
    fund("admin", 1_000)
    apply_tx(dep, {"type": "DepositVotingRewards", "funder": "admin", "amount": 1_000})
    vid = voting.cast_vote(dep.book, dep.registry, dep.pool, "bob", ads[0], pos["bob"], 0, 10)
    voting.close_voting(dep.book, 0, "admin", 20)

    assert voting.distribute_voting_rewards(dep.book, dep.treasury, 0, 500, "admin") == 5_000
    with pytest.raises(RewardsAlreadyDistributed):
        voting.distribute_voting_rewards(dep.book, dep.treasury, 0, 500, "admin")
    assert dep.treasury.voting_reward_reserve == 500
    assert dep.treasury.yield_reserve == 500
    assert len(dep.events.find("VotingRewardsDistributed")) == 1

    assert voting.claim_voting_reward(dep.book, dep.pool, vid, 0, "bob") == 500
    assert dep.pool.positions[pos["bob"]].advertiser_yield_claimable == 500


def test_claim_for_a_closed_position_changes_nothing(dep, fund, ballot):
    ads, pos = ballot
    fund("admin", 1_000)
    apply_tx(dep, {"type": "DepositVotingRewards", "funder": "admin", "amount": 1_000})
    vid = voting.cast_vote(dep.book, dep.registry, dep.pool, "bob", ads[0], pos["bob"], 0, 10)
    voting.close_voting(dep.book, 0, "admin", 20)
    voting.distribute_voting_rewards(dep.book, dep.treasury, 0, 500, "admin")
    staking.unstake(dep.pool, dep.treasury, dep.accounts, pos["bob"], "bob", 30)

    with pytest.raises(UnknownEntity):
        voting.claim_voting_reward(dep.book, dep.pool, vid, 0, "bob")
    assert not dep.book.votes[vid].reward_claimed
    assert dep.events.find("VotingRewardClaimed") == []


def test_claim_before_distribution_pays_nothing(dep, ballot):
    ads, pos = ballot
    vid = voting.cast_vote(dep.book, dep.registry, dep.pool, "bob", ads[0], pos["bob"], 0, 10)
    with pytest.raises(EpochMismatch):
        voting.claim_voting_reward(dep.book, dep.pool, vid, 3, "bob")
    with pytest.raises(NotOwner):
        voting.claim_voting_reward(dep.book, dep.pool, vid, 0, "alice")
    assert voting.claim_voting_reward(dep.book, dep.pool, vid, 0, "bob") == 0
    assert dep.book.votes[vid].reward_claimed
    assert dep.pool.positions[pos["bob"]].advertiser_yield_claimable == 0


def test_leading_participant_prefers_earliest_on_ties(dep, ballot):
    ads, pos = ballot
    assert voting.leading_participant(dep.book, 0, ads) == ads[0]
    assert voting.leading_participant(dep.book, 0, []) is None

    voting.cast_vote(dep.book, dep.registry, dep.pool, "bob", ads[1], pos["bob"], 0, 10)
    assert voting.leading_participant(dep.book, 0, ads) == ads[1]
    voting.cast_vote(dep.book, dep.registry, dep.pool, "alice", ads[0], pos["alice"], 0, 10)
    assert voting.leading_participant(dep.book, 0, ads) == ads[0]
