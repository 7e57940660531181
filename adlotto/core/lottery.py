# adlotto/core/lottery.py
"""
Epoch coordinator: a two-step draw.

    idle --pick_winner--> pending --finalize_epoch--> idle (epoch + 1)

Picking only commits to a candidate id; finalizing honours exactly that id,
unseals the ad and archives the win. Either step can be retried on its own.
Which rule picks the candidate is fixed per deployment by ``config.selection``.
"""
from __future__ import annotations
from typing import Optional
import logging

from .errors import NoActiveAds, NoPendingWinner, WinnerAlreadyPicked, WrongWinnerObject
from .events import EventLog
from .registry import get_ad, mark_winner
from .state import SELECTIONS, AdRegistry, LotteryConfig, PastWinner, Rules, VoteBook, hold
from .voting import leading_participant

logger = logging.getLogger(__name__)

IDLE = "idle"
PENDING = "pending"


def create_config(rules: Rules, events: EventLog, admin: str) -> LotteryConfig:
    if rules.winner_selection not in SELECTIONS:
        raise ValueError(f"unknown winner selection {rules.winner_selection!r}")
    return LotteryConfig(rules, events, admin)


def state_of(cfg: LotteryConfig) -> str:
    with cfg.lock():
        return PENDING if cfg.pending_winner_id is not None else IDLE


def pick_winner(cfg: LotteryConfig, reg: AdRegistry, rng, now_ms: int,
                book: Optional[VoteBook] = None) -> str:
    if cfg.selection == "votes" and book is None:
        raise ValueError("vote-based selection needs the vote book")
    with hold(reg, book, cfg):
        if cfg.pending_winner_id is not None:
            raise WinnerAlreadyPicked(f"{cfg.pending_winner_id} is awaiting finalization")
        candidates = list(reg.active)
        if not candidates:
            raise NoActiveAds("no active ads to draw from")

        if cfg.selection == "votes":
            winner = leading_participant(book, cfg.current_epoch, candidates)
        else:
            winner = candidates[rng.randint(len(candidates))]

        cfg.pending_winner_id = winner
        cfg.last_draw_time = now_ms
        cfg.events.emit("WinnerPicked", now_ms, winner_ad_id=winner,
                        epoch=cfg.current_epoch, timestamp=now_ms, candidates=len(candidates))
    logger.info("epoch %d: picked %s out of %d", cfg.current_epoch, winner, len(candidates))
    return winner


def finalize_epoch(cfg: LotteryConfig, reg: AdRegistry, participant_id: str, now_ms: int) -> PastWinner:
    with hold(reg, cfg):
        if cfg.pending_winner_id is None:
            raise NoPendingWinner("no winner has been picked")
        if participant_id != cfg.pending_winner_id:
            raise WrongWinnerObject(
                f"pending winner is {cfg.pending_winner_id}, got {participant_id}")
        ad = get_ad(reg, participant_id)

        epoch = cfg.current_epoch
        mark_winner(ad, epoch)
        past = PastWinner(epoch=epoch, winner_id=participant_id, timestamp=now_ms)
        cfg.past_winners.append(past)
        cfg.latest_confirmed_winner_id = participant_id
        cfg.pending_winner_id = None
        cfg.current_epoch += 1
        cfg.events.emit("EpochFinalized", now_ms, winner_ad_id=participant_id, epoch=epoch,
                        timestamp=now_ms, wins=ad.wins_count)
    logger.info("epoch %d finalized: %s unsealed", epoch, participant_id)
    return past


def past_winners(cfg: LotteryConfig):
    with cfg.lock():
        return list(cfg.past_winners)
