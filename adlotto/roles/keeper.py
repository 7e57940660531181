# adlotto/roles/keeper.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import logging
import threading
import time

from ..core.apply import Deployment, Receipt, apply_tx

logger = logging.getLogger(__name__)

HINTS = {
    "EWinnerAlreadyPicked": "a winner is already pending; another keeper may have run",
    "ENoPendingWinner": "no pending winner; the epoch was probably finalized already",
    "EWrongWinnerObject": "finalized id does not match the pending winner",
    "ENoActiveAds": "no active ads; submit some ads first",
    "EInsufficientReserve": "yield reserve too low for the payouts; top it up",
    "ERewardsAlreadyDistributed": "this epoch's voting rewards were already distributed",
}


class KeeperStepFailed(RuntimeError):
    def __init__(self, step: str, receipt: Receipt):
        super().__init__(f"{step} failed: {receipt.code} {receipt.error}")
        self.step = step
        self.receipt = receipt

    @property
    def code(self) -> Optional[str]:
        return self.receipt.code


@dataclass
class KeeperStats:
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    winners_picked: int = 0
    epochs_finalized: int = 0
    last_run_ms: Optional[int] = None
    last_error: Optional[str] = None
    last_error_code: Optional[str] = None


class Keeper(threading.Thread):
    """
    Drives the draw: finalize whatever is pending, then pick, rotate and
    finalize a new winner. Optionally closes and rewards each epoch's vote
    and opens voting for the next one (needs the admin account).
    """
    def __init__(self, dep: Deployment, acct: Optional[str] = None,
                 submit_tx: Optional[Callable[[Dict[str, Any]], Receipt]] = None,
                 interval_sec: float = 1.0, manage_voting: bool = False,
                 voting_reward_pool: int = 0):
        super().__init__(daemon=True)
        self.dep = dep
        self.acct = acct or dep.admin
        self.submit_tx = submit_tx or (lambda tx: apply_tx(dep, tx))
        self.interval_sec = interval_sec
        self.manage_voting = manage_voting
        self.voting_reward_pool = voting_reward_pool
        self.stats = KeeperStats()
        self.running = True

    def _step(self, step: str, tx: Dict[str, Any]) -> Receipt:
        r = self.submit_tx(tx)
        if not r.ok:
            raise KeeperStepFailed(step, r)
        return r

    def _pending(self) -> Optional[str]:
        with self.dep.config.lock():
            return self.dep.config.pending_winner_id

    def _epoch(self) -> int:
        with self.dep.config.lock():
            return self.dep.config.current_epoch

    def ensure_voting_open(self):
        if not self.manage_voting:
            return
        epoch = self._epoch()
        with self.dep.book.lock():
            if epoch in self.dep.book.epochs:
                return
        self._step("open voting", {"type": "OpenVoting", "caller": self.acct, "epoch": epoch})

    def _settle_voting(self, epoch: int):
        if not self.manage_voting:
            return
        book = self.dep.book
        with book.lock():
            ep = book.epochs.get(epoch)
            if ep is None:
                return
            is_open = ep.is_active
        if not is_open:
            return
        self._step("close voting", {"type": "CloseVoting", "caller": self.acct, "epoch": epoch})
        if self.voting_reward_pool > 0:
            self._step("distribute voting rewards",
                       {"type": "DistributeVotingRewards", "caller": self.acct,
                        "epoch": epoch, "amount": self.voting_reward_pool})

    def _rotate_and_finalize(self, pending: str):
        r = self._step("rotate session", {"type": "RotateSession"})
        logger.info("session rotated to %s, %d viewers paid", pending, len(r.result))
        self._step("finalize epoch", {"type": "FinalizeEpoch", "ad_id": pending})
        self.stats.epochs_finalized += 1

    def run_cycle(self) -> bool:
        self.stats.total_runs += 1
        self.stats.last_run_ms = self.dep.now_ms()
        self.stats.last_error = None
        self.stats.last_error_code = None
        try:
            pending = self._pending()
            if pending is not None:
                logger.warning("pending winner %s found, finalizing it first", pending)
                self._rotate_and_finalize(pending)

            self._settle_voting(self._epoch())
            r = self._step("pick winner", {"type": "PickWinner"})
            self.stats.winners_picked += 1

            pending = self._pending()
            if pending is None:
                raise RuntimeError("no pending winner after pick_winner")
            if pending != r.result:
                logger.warning("picked %s but %s is pending", r.result, pending)
            self._rotate_and_finalize(pending)
            self.ensure_voting_open()
        except KeeperStepFailed as e:
            self.stats.failed_runs += 1
            self.stats.last_error = str(e)
            self.stats.last_error_code = e.code
            hint = HINTS.get(e.code or "")
            logger.warning("keeper cycle #%d: %s%s", self.stats.total_runs, e,
                           f" ({hint})" if hint else "")
            return False
        self.stats.successful_runs += 1
        return True

    def run(self):
        try:
            self.ensure_voting_open()
        except KeeperStepFailed as e:
            logger.error("keeper could not open voting: %s", e)
        while self.running:
            self.run_cycle()
            deadline = time.time() + self.interval_sec
            while self.running and time.time() < deadline:
                time.sleep(0.02)

    def stop(self):
        self.running = False
