# adlotto/roles/audience.py
from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional
import logging
import random
import threading
import time

from ..core.apply import Deployment, Receipt
from ..core.staking import pending_yield
from ..storage.content_stub import ContentStore

logger = logging.getLogger(__name__)


class AudienceMember(threading.Thread):
    """
    Watches the ad the verification session tracks and registers attendance
    once per generation. With a stake it also votes once per open epoch and
    claims its voting rewards after distribution.
    """
    def __init__(self, acct: str, dep: Deployment, store: ContentStore,
                 submit_tx: Callable[[Dict[str, Any]], Receipt], stake: int = 0,
                 seed: int = 0, poll_sec: float = 0.05):
        super().__init__(daemon=True)
        self.acct = acct
        self.dep = dep
        self.store = store
        self.submit_tx = submit_tx
        self.stake = stake
        self.rng = random.Random(seed)
        self.poll_sec = poll_sec
        self.position_id: Optional[str] = None
        self.vote_ids: List[str] = []
        self.attended = 0
        self.voting_rewards = 0
        self.collected = 0
        self.running = True

    def _open_stake(self):
        if self.stake <= 0 or self.position_id is not None:
            return
        r = self.submit_tx({"type": "Stake", "owner": self.acct, "amount": self.stake})
        if r.ok:
            self.position_id = r.result
        else:
            logger.warning("[%s] stake rejected: %s", self.acct, r.code)
            self.stake = 0

    def _maybe_attend(self):
        sess = self.dep.session
        with sess.lock():
            target = sess.active_participant_id
            gen = sess.epoch_counter
            done = sess.last_generation_by_address.get(self.acct) == gen
        if target is None or done:
            return
        with self.dep.registry.lock():
            ad = self.dep.registry.ads.get(target)
            cid = ad.content_reference if ad is not None else None
        if cid is None:
            return
        ok, _data = self.store.get(cid)
        if not ok:
            return  # content unavailable; try again next poll
        r = self.submit_tx({"type": "RegisterAttendance", "viewer": self.acct, "ad_id": target})
        if r.ok:
            self.attended += 1
        elif r.code not in ("EAlreadyRegistered", "EWrongSessionTarget"):
            logger.warning("[%s] attendance rejected: %s", self.acct, r.code)

    def _maybe_vote(self):
        if self.position_id is None:
            return
        book = self.dep.book
        with self.dep.config.lock():
            epoch = self.dep.config.current_epoch
        now = self.dep.now_ms()
        with book.lock():
            ep = book.epochs.get(epoch)
            rec = book.records.get(epoch)
            if ep is None or not ep.window_open(now):
                return
            if rec is not None and self.acct in rec.voters:
                return
        with self.dep.registry.lock():
            candidates = list(self.dep.registry.active)
        if not candidates:
            return
        choice = self.rng.choice(candidates)
        r = self.submit_tx({"type": "CastVote", "voter": self.acct, "ad_id": choice,
                            "position_id": self.position_id, "epoch": epoch})
        if r.ok:
            self.vote_ids.append(r.result)

    def _maybe_claim_votes(self):
        book = self.dep.book
        ready = []
        with book.lock():
            for vid in self.vote_ids:
                v = book.votes[vid]
                rec = book.records.get(v.epoch)
                if not v.reward_claimed and rec is not None and rec.reward_per_vote > 0:
                    ready.append(vid)
        for vid in ready:
            r = self.submit_tx({"type": "ClaimVotingReward", "voter": self.acct, "vote_id": vid})
            if r.ok:
                self.voting_rewards += r.result

    def _maybe_collect(self):
        if self.position_id is None:
            return
        if pending_yield(self.dep.pool, self.position_id, self.dep.now_ms()) <= 0:
            return
        r = self.submit_tx({"type": "ClaimRewards", "owner": self.acct,
                            "position_id": self.position_id})
        if r.ok:
            self.collected += r.result

    def run(self):
        self._open_stake()
        while self.running:
            self._maybe_attend()
            self._maybe_vote()
            self._maybe_claim_votes()
            self._maybe_collect()
            time.sleep(self.poll_sec)

    def stop(self):
        self.running = False
