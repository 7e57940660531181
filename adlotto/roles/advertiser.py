# adlotto/roles/advertiser.py
from __future__ import annotations
from typing import Any, Callable, Dict, Optional
import logging
import threading
import time

from ..core.apply import Deployment, Receipt
from ..core.staking import pending_yield
from ..storage.content_stub import ContentStore

logger = logging.getLogger(__name__)


class Advertiser(threading.Thread):
    """
    Submits one ad backed by a stake, claims its yield now and then and,
    after `withdraw_after_claims` claims, deactivates the ad and unstakes.
    """
    def __init__(self, acct: str, dep: Deployment, store: ContentStore,
                 submit_tx: Callable[[Dict[str, Any]], Receipt], stake: int,
                 content: bytes = b"", withdraw_after_claims: int = 0,
                 poll_sec: float = 0.1):
        super().__init__(daemon=True)
        self.acct = acct
        self.dep = dep
        self.store = store
        self.submit_tx = submit_tx
        self.stake = stake
        self.content = content or f"creative-{acct}".encode()
        self.withdraw_after_claims = withdraw_after_claims
        self.poll_sec = poll_sec
        self.ad_id: Optional[str] = None
        self.position_id: Optional[str] = None
        self.claimed_total = 0
        self.claims = 0
        self.withdrawn = False
        self.running = True

    def submit_ad(self) -> bool:
        cid = self.store.put(self.content, tag="ad")
        r = self.submit_tx({"type": "SubmitAd", "advertiser": self.acct,
                            "stake": self.stake, "content_ref": cid})
        if not r.ok:
            logger.warning("[%s] ad rejected: %s", self.acct, r.code)
            return False
        self.ad_id = r.result
        with self.dep.registry.lock():
            self.position_id = self.dep.registry.ads[self.ad_id].linked_stake_position_id
        return True

    def _maybe_claim(self):
        if pending_yield(self.dep.pool, self.position_id, self.dep.now_ms()) <= 0:
            return
        r = self.submit_tx({"type": "ClaimRewards", "owner": self.acct,
                            "position_id": self.position_id})
        if r.ok:
            self.claimed_total += r.result
            self.claims += 1
        else:
            logger.debug("[%s] claim failed: %s", self.acct, r.code)

    def withdraw(self) -> Optional[int]:
        r = self.submit_tx({"type": "DeactivateAd", "advertiser": self.acct, "ad_id": self.ad_id})
        if not r.ok and r.code != "EAdInactive":
            logger.warning("[%s] deactivate failed: %s", self.acct, r.code)
            return None
        r = self.submit_tx({"type": "Unstake", "owner": self.acct, "position_id": self.position_id})
        if not r.ok:
            logger.warning("[%s] unstake failed: %s", self.acct, r.code)
            return None
        self.withdrawn = True
        return r.result

    def run(self):
        while self.running and self.ad_id is None:
            if not self.submit_ad():
                time.sleep(self.poll_sec * 5)
        while self.running and not self.withdrawn:
            self._maybe_claim()
            if self.withdraw_after_claims and self.claims >= self.withdraw_after_claims:
                self.withdraw()
            time.sleep(self.poll_sec)

    def stop(self):
        self.running = False
