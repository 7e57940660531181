# adlotto/core/verification.py
"""
Proof-of-participation session.

Addresses register attendance against the ad the session currently tracks.
Rotating the session pays up to ``payout_cap`` random draws over the current
generation's viewers, then starts a fresh generation for the pending winner.

Draws are independent and with replacement: one viewer can be paid more than
once and fewer than ``payout_cap`` distinct viewers may be paid.
"""
from __future__ import annotations
from typing import List
import logging

from .accounts import credit
from .errors import AlreadyRegistered, InsufficientReserve, NoPendingWinner, WrongSessionTarget
from .state import Accounts, LotteryConfig, Treasury, VerificationSession, hold
from .treasury import VERIFICATION, withdraw_yield

logger = logging.getLogger(__name__)


def register_attendance(sess: VerificationSession, participant_id: str, caller: str,
                        now_ms: int) -> int:
    with sess.lock():
        if sess.active_participant_id is None or participant_id != sess.active_participant_id:
            raise WrongSessionTarget(
                f"session tracks {sess.active_participant_id}, not {participant_id}")
        gen = sess.epoch_counter
        if sess.last_generation_by_address.get(caller) == gen:
            raise AlreadyRegistered(f"{caller} already registered in generation {gen}")

        index = len(sess.viewers)
        sess.viewers.append(caller)
        sess.last_generation_by_address[caller] = gen
        sess.events.emit("AttendanceRegistered", now_ms, participant_id=participant_id,
                         viewer=caller, generation=gen, index=index)
    logger.debug("%s attended %s (gen %d, #%d)", caller, participant_id, gen, index)
    return index


def viewer_at(sess: VerificationSession, generation: int, index: int):
    """Viewer stored at (generation, index); earlier generations are unreachable."""
    with sess.lock():
        if generation != sess.epoch_counter or not 0 <= index < len(sess.viewers):
            return None
        return sess.viewers[index]


def rotate_session(sess: VerificationSession, cfg: LotteryConfig, tr: Treasury,
                   acc: Accounts, rng, now_ms: int) -> List[str]:
    """Pay the current generation, then track the pending winner. Returns payees in draw order."""
    with hold(cfg, sess, tr, acc):
        new_ad = cfg.pending_winner_id
        if new_ad is None:
            raise NoPendingWinner("nothing to rotate to")
        n = len(sess.viewers)
        draws = min(n, sess.rules.payout_cap)
        amount = sess.rules.payout_per_viewer
        cost = draws * amount
        if cost > tr.yield_reserve:
            raise InsufficientReserve(f"rotation needs {cost}, yield reserve holds {tr.yield_reserve}")
        payees = [sess.viewers[rng.randint(n)] for _ in range(draws)]

        gen = sess.epoch_counter
        for viewer in payees:
            if amount > 0:
                withdraw_yield(tr, amount, VERIFICATION, now_ms)
                credit(acc, viewer, amount)
            sess.events.emit("ViewerRewarded", now_ms, viewer=viewer, amount=amount,
                             generation=gen, participant_id=sess.active_participant_id)

        old_ad = sess.active_participant_id
        sess.epoch_counter += 1
        sess.viewers = []
        sess.active_participant_id = new_ad
        sess.events.emit("SessionRotated", now_ms, old_ad_id=old_ad, new_ad_id=new_ad,
                         viewers_paid=draws, distinct_paid=len(set(payees)),
                         total_viewers=n, generation=sess.epoch_counter)
    logger.info("session rotated %s -> %s: %d payouts over %d viewers",
                old_ad, new_ad, draws, n)
    return payees
