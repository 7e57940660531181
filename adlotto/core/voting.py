# adlotto/core/voting.py
"""
Per-epoch vote tally and voting rewards.

Votes carry the voter's stake amount as it was when the vote was cast. A
record's ``reward_per_vote`` is scaled by 10,000 and is set once the admin
distributes that epoch's reward pool; claims credit the voter's stake
position and are paid out through the ledger's normal claim path.
"""
from __future__ import annotations
from typing import Optional, Sequence
import logging

from .errors import (
    AdInactive, AlreadyVoted, EpochMismatch, InsufficientReserve, InvalidAmount, InvalidArgument,
    NotAdmin, NotOwner, RewardAlreadyClaimed, RewardsAlreadyDistributed, UnknownEntity,
    VotingAlreadyOpen, VotingClosed, VotingStillOpen,
)
from .registry import get_ad
from .staking import credit_advertiser_yield, position_of
from .state import AdRegistry, StakePool, Treasury, Vote, VoteBook, VotingEpoch, hold
from .treasury import VOTING, release_voting_rewards

logger = logging.getLogger(__name__)

REWARD_SCALE = 10_000


def _admin(book: VoteBook, caller: str):
    if caller != book.admin:
        raise NotAdmin(f"{caller} is not the voting admin")


def open_voting(book: VoteBook, epoch: int, now_ms: int, caller: str,
                duration_ms: Optional[int] = None) -> VotingEpoch:
    duration = book.rules.voting_window_ms if duration_ms is None else int(duration_ms)
    if duration <= 0:
        raise InvalidArgument("voting window must be positive")
    with book.lock():
        _admin(book, caller)
        if epoch in book.epochs:
            raise VotingAlreadyOpen(f"voting for epoch {epoch} was already opened")
        ep = VotingEpoch(epoch=epoch, start_ms=now_ms, end_ms=now_ms + duration)
        book.epochs[epoch] = ep
        book.record_for(epoch)
        book.events.emit("VotingOpened", now_ms, epoch=epoch, end_ms=ep.end_ms)
    logger.info("voting open for epoch %d until %d", epoch, ep.end_ms)
    return ep


def close_voting(book: VoteBook, epoch: int, caller: str, now_ms: int = 0):
    with book.lock():
        _admin(book, caller)
        ep = book.epochs.get(epoch)
        if ep is None or not ep.is_active:
            raise VotingClosed(f"voting for epoch {epoch} is not open")
        ep.is_active = False
        book.events.emit("VotingClosed", now_ms, epoch=epoch,
                         total_votes=book.records[epoch].total_votes)


def is_voting_open(book: VoteBook, epoch: int, now_ms: int) -> bool:
    with book.lock():
        ep = book.epochs.get(epoch)
        return ep is not None and ep.window_open(now_ms)


def cast_vote(book: VoteBook, reg: AdRegistry, pool: StakePool, voter: str,
              participant_id: str, position_id: str, epoch: int, now_ms: int) -> str:
    with hold(reg, pool, book):
        pos = position_of(pool, position_id)
        if pos.owner != voter:
            raise NotOwner(f"{voter} does not own {position_id}")
        ep = book.epochs.get(epoch)
        if ep is None or not ep.window_open(now_ms):
            raise VotingClosed(f"epoch {epoch} is not accepting votes")
        rec = book.records.get(epoch)
        if rec is not None and voter in rec.voters:
            raise AlreadyVoted(f"{voter} already voted in epoch {epoch}")
        ad = get_ad(reg, participant_id)
        if not ad.is_active:
            raise AdInactive(f"{participant_id} is not active")

        power = pos.amount
        rec = book.record_for(epoch)
        ad.total_votes_received += power
        ep.votes_by_participant[participant_id] = ep.votes_by_participant.get(participant_id, 0) + power
        rec.voters.add(voter)
        rec.total_votes += power
        vote_id = f"vote-{book.next_vote_id}"
        book.next_vote_id += 1
        book.votes[vote_id] = Vote(vote_id=vote_id, voter=voter, participant_id=participant_id,
                                   linked_stake_position_id=position_id,
                                   voting_power=power, epoch=epoch)
        book.events.emit("VoteCast", now_ms, vote_id=vote_id, voter=voter,
                         participant_id=participant_id, voting_power=power, epoch=epoch)
    logger.debug("%s voted %s with %d in epoch %d", voter, participant_id, power, epoch)
    return vote_id


def distribute_voting_rewards(book: VoteBook, tr: Treasury, epoch: int, pool_amount: int,
                              caller: str, now_ms: int = 0) -> int:
    """
    Fix reward_per_vote for `epoch` and back it with `pool_amount` from the
    voting-reward reserve. The epoch's voting must be closed, and an epoch is
    distributed at most once. Without votes nothing changes. Returns reward_per_vote.
    """
    if pool_amount < 0:
        raise InvalidAmount("pool amount must be non-negative")
    with hold(book, tr):
        _admin(book, caller)
        ep = book.epochs.get(epoch)
        if ep is None:
            raise UnknownEntity(f"voting was never opened for epoch {epoch}")
        if ep.is_active:
            raise VotingStillOpen(f"close voting for epoch {epoch} before distributing")
        rec = book.record_for(epoch)
        if rec.distributed:
            raise RewardsAlreadyDistributed(f"epoch {epoch} rewards were already distributed")
        if rec.total_votes <= 0:
            return rec.reward_per_vote
        if pool_amount > tr.voting_reward_reserve:
            raise InsufficientReserve(
                f"voting reward reserve {tr.voting_reward_reserve} < {pool_amount}")

        rec.reward_per_vote = pool_amount * REWARD_SCALE // rec.total_votes
        rec.distributed = True
        release_voting_rewards(tr, pool_amount, VOTING)
        book.events.emit("VotingRewardsDistributed", now_ms, epoch=epoch,
                         pool_amount=pool_amount, total_votes=rec.total_votes,
                         reward_per_vote=rec.reward_per_vote)
    logger.info("epoch %d voting rewards: %d over %d votes", epoch, pool_amount, rec.total_votes)
    return rec.reward_per_vote


def voting_reward(vote: Vote, reward_per_vote: int) -> int:
    return vote.voting_power * reward_per_vote // REWARD_SCALE


def claim_voting_reward(book: VoteBook, pool: StakePool, vote_id: str, epoch: int,
                        caller: str, now_ms: int = 0) -> int:
    with hold(pool, book):
        vote = book.votes.get(vote_id)
        if vote is None:
            raise UnknownEntity(f"no vote {vote_id}")
        if caller != vote.voter:
            raise NotOwner(f"{caller} did not cast {vote_id}")
        if vote.reward_claimed:
            raise RewardAlreadyClaimed(f"{vote_id} was already claimed")
        rec = book.records.get(epoch)
        if rec is None or vote.epoch != rec.epoch:
            raise EpochMismatch(f"{vote_id} belongs to epoch {vote.epoch}, not {epoch}")
        reward = voting_reward(vote, rec.reward_per_vote)
        if reward > 0:
            # raises UnknownEntity before any change if the position is gone
            credit_advertiser_yield(pool, vote.linked_stake_position_id, reward, now_ms)
        vote.reward_claimed = True
        book.events.emit("VotingRewardClaimed", now_ms, vote_id=vote_id, voter=caller,
                         epoch=epoch, amount=reward)
    return reward


def leading_participant(book: VoteBook, epoch: int, candidates: Sequence[str]) -> Optional[str]:
    """Most-voted candidate for `epoch`; the earliest candidate wins ties and the no-vote case."""
    if not candidates:
        return None
    with book.lock():
        ep = book.epochs.get(epoch)
        tally = dict(ep.votes_by_participant) if ep is not None else {}
    best = candidates[0]
    best_votes = tally.get(best, 0)
    for cid in candidates[1:]:
        v = tally.get(cid, 0)
        if v > best_votes:
            best, best_votes = cid, v
    return best
