# adlotto/core/state.py
from __future__ import annotations
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set
from threading import RLock

from .events import EventLog

SELECTIONS = ("random", "votes")

########################
# Deployment parameters
########################

@dataclass
class Rules:
    epoch_ms: int = 86_400_000
    min_stake: int = 1_000
    max_stake: int = 1_000_000_000_000
    apy_bps: int = 1_000
    payout_per_viewer: int = 1_000
    payout_cap: int = 50
    voting_window_ms: int = 86_400_000
    submission_fee: int = 0
    winner_selection: str = "random"   # 'random' | 'votes'

    def epoch_of(self, now_ms: int) -> int:
        return int(now_ms) // self.epoch_ms

########################
# Canonical state types
########################

@dataclass
class StakePosition:
    position_id: str
    owner: str
    amount: int
    epoch_staked: int
    last_claim_epoch: int
    linked_participant_id: Optional[str] = None
    advertiser_yield_claimable: int = 0

@dataclass
class Advertisement:
    ad_id: str
    advertiser: str
    content_reference: str
    stake_amount: int
    linked_stake_position_id: str
    epoch_created: int
    total_votes_received: int = 0
    wins_count: int = 0
    is_active: bool = True
    is_unsealed: bool = False

@dataclass
class Vote:
    vote_id: str
    voter: str
    participant_id: str
    linked_stake_position_id: str
    voting_power: int
    epoch: int
    reward_claimed: bool = False

@dataclass
class VotingRecord:
    epoch: int
    total_votes: int = 0
    voters: Set[str] = field(default_factory=set)
    reward_per_vote: int = 0
    distributed: bool = False

@dataclass
class VotingEpoch:
    epoch: int
    start_ms: int
    end_ms: int
    is_active: bool = True
    # participant -> summed power, in first-vote order
    votes_by_participant: Dict[str, int] = field(default_factory=dict)

    def window_open(self, now_ms: int) -> bool:
        return self.is_active and self.start_ms <= now_ms < self.end_ms

@dataclass(frozen=True)
class PastWinner:
    epoch: int
    winner_id: str
    timestamp: int

########################
# Shared singletons
########################

class _Shared:
    """
    A long-lived entity guarded by its own RLock.
    LOCK_RANK fixes the acquisition order used by hold().
    """
    LOCK_RANK = 0

    def __init__(self, rules: Rules, events: EventLog):
        self._lock = RLock()
        self.rules = rules
        self.events = events

    def lock(self):
        return self._lock


class AdRegistry(_Shared):
    LOCK_RANK = 10

    def __init__(self, rules: Rules, events: EventLog, admin: str):
        super().__init__(rules, events)
        self.admin = admin
        self.ads: Dict[str, Advertisement] = {}
        self.active: List[str] = []          # unique, submission order
        self.total_submitted: int = 0


class StakePool(_Shared):
    LOCK_RANK = 20

    def __init__(self, rules: Rules, events: EventLog, admin: str):
        super().__init__(rules, events)
        self.admin = admin
        self.apy_rate_bps: int = rules.apy_bps
        self.total_staked: int = 0
        self.staked_balance: int = 0
        self.positions: Dict[str, StakePosition] = {}
        self.next_position_id = 1

    def new_position_id(self) -> str:
        pid = f"pos-{self.next_position_id}"
        self.next_position_id += 1
        return pid


class VoteBook(_Shared):
    LOCK_RANK = 30

    def __init__(self, rules: Rules, events: EventLog, admin: str):
        super().__init__(rules, events)
        self.admin = admin
        self.epochs: Dict[int, VotingEpoch] = {}
        self.records: Dict[int, VotingRecord] = {}
        self.votes: Dict[str, Vote] = {}
        self.next_vote_id = 1

    def record_for(self, epoch: int) -> VotingRecord:
        rec = self.records.get(epoch)
        if rec is None:
            rec = self.records[epoch] = VotingRecord(epoch=epoch)
        return rec


class LotteryConfig(_Shared):
    LOCK_RANK = 35

    def __init__(self, rules: Rules, events: EventLog, admin: str):
        super().__init__(rules, events)
        self.admin = admin
        self.selection: str = rules.winner_selection
        self.current_epoch: int = 0
        self.last_draw_time: int = 0
        self.pending_winner_id: Optional[str] = None
        self.latest_confirmed_winner_id: Optional[str] = None
        self.past_winners: List[PastWinner] = []


class VerificationSession(_Shared):
    LOCK_RANK = 40

    def __init__(self, rules: Rules, events: EventLog, admin: str):
        super().__init__(rules, events)
        self.admin = admin
        self.active_participant_id: Optional[str] = None
        self.epoch_counter: int = 0
        # current generation only; replaced wholesale on rotation
        self.viewers: List[str] = []
        self.last_generation_by_address: Dict[str, int] = {}

    @property
    def total_viewers(self) -> int:
        return len(self.viewers)


class Treasury(_Shared):
    LOCK_RANK = 50

    def __init__(self, rules: Rules, events: EventLog, admin: str):
        super().__init__(rules, events)
        self.admin = admin
        self.balance: int = 0
        self.yield_reserve: int = 0
        self.voting_reward_reserve: int = 0
        self.fees_collected: int = 0
        self.collaborators: Set[str] = {admin}


class Accounts(_Shared):
    LOCK_RANK = 60

    def __init__(self, rules: Rules, events: EventLog):
        super().__init__(rules, events)
        self.balances: Dict[str, int] = {}

    def balance_of(self, acct: str) -> int:
        return self.balances.get(acct, 0)

    def total(self) -> int:
        return sum(self.balances.values())

#######################
# Locking
#######################

@contextmanager
def hold(*entities: Optional[_Shared]):
    """Acquire the locks of the given entities in LOCK_RANK order."""
    seen = {}
    for ent in entities:
        if ent is not None:
            seen[id(ent)] = ent
    ordered = sorted(seen.values(), key=lambda e: e.LOCK_RANK)
    with ExitStack() as stack:
        for ent in ordered:
            stack.enter_context(ent.lock())
        yield
