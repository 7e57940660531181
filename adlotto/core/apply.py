# adlotto/core/apply.py
"""
Deployment bundle and the tx-shaped entry point used by roles and runs.

`apply_tx` maps a tx dict onto one core operation and reports the outcome as
a `Receipt`. Operational faults (`LottoError`) become failed receipts; anything
else is a bug and propagates. A tx carrying a "nonce" is applied at most once:
its hash is recorded only after success, so failed attempts can be retried.
Malformed tx fields are rejected as `InvalidArgument`.
"""
from __future__ import annotations
from dataclasses import dataclass, field, is_dataclass, asdict
from threading import RLock
from typing import Any, Callable, Dict, Optional, Set
import hashlib
import logging

from . import lottery, registry, staking, treasury, verification, voting
from .accounts import credit, debit, require_balance
from .entropy import SystemClock, VrfRandomness
from .errors import InvalidAmount, InvalidArgument, LottoError, UnknownEntity
from .events import EventLog
from .state import (
    Accounts, AdRegistry, LotteryConfig, Rules, StakePool, Treasury,
    VerificationSession, VoteBook, hold,
)

logger = logging.getLogger(__name__)


@dataclass
class Deployment:
    rules: Rules
    admin: str
    events: EventLog
    registry: AdRegistry
    pool: StakePool
    book: VoteBook
    config: LotteryConfig
    session: VerificationSession
    treasury: Treasury
    accounts: Accounts
    rng: Any
    clock: Any
    applied_txs: Set[str] = field(default_factory=set)
    _inflight: Set[str] = field(default_factory=set, repr=False)
    _tx_lock: Any = field(default_factory=RLock, repr=False)

    def now_ms(self) -> int:
        return self.clock.now_ms()


def create_deployment(rules: Optional[Rules] = None, admin: str = "admin",
                      rng=None, clock=None) -> Deployment:
    """One-time setup of every shared entity."""
    rules = rules or Rules()
    events = EventLog()
    return Deployment(
        rules=rules,
        admin=admin,
        events=events,
        registry=AdRegistry(rules, events, admin),
        pool=StakePool(rules, events, admin),
        book=VoteBook(rules, events, admin),
        config=lottery.create_config(rules, events, admin),
        session=VerificationSession(rules, events, admin),
        treasury=treasury.create_treasury(rules, events, admin),
        accounts=Accounts(rules, events),
        rng=rng if rng is not None else VrfRandomness(secret=admin.encode()),
        clock=clock if clock is not None else SystemClock(),
    )


@dataclass
class Receipt:
    ok: bool
    tx_type: str
    result: Any = None
    code: Optional[str] = None
    error: Optional[str] = None
    category: Optional[str] = None

########################
# tx hashing
########################

def _norm_for_hash(x):
    if is_dataclass(x): x = asdict(x)
    if isinstance(x, dict):  return {k: _norm_for_hash(v) for k, v in sorted(x.items())}
    if isinstance(x, list):  return [_norm_for_hash(v) for v in x]
    if isinstance(x, tuple): return tuple(_norm_for_hash(v) for v in x)
    return x

def tx_hash(tx: Dict[str, Any]) -> str:
    s = repr(_norm_for_hash(tx))
    return hashlib.sha256(s.encode()).hexdigest()

########################
# handlers
########################

def _field(tx, key):
    value = tx.get(key)
    if value is None:
        raise InvalidArgument(f"tx is missing {key!r}")
    return value

def _int(tx, key) -> int:
    value = _field(tx, key)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"{key} must be an integer, got {value!r}") from None

def _fund(dep: Deployment, tx, now):
    acct, amount = _field(tx, "acct"), _int(tx, "amount")
    if amount <= 0:
        raise InvalidAmount(f"amount must be positive, got {amount}")
    credit(dep.accounts, acct, amount)
    return dep.accounts.balance_of(acct)

def _deposit(dep: Deployment, tx, now, into):
    funder, amount = _field(tx, "funder"), _int(tx, "amount")
    with hold(dep.treasury, dep.accounts):
        require_balance(dep.accounts, funder, amount)
        debit(dep.accounts, funder, amount)
        into(dep.treasury, amount, now)
    return amount

def _deposit_yield(dep, tx, now):
    return _deposit(dep, tx, now, treasury.deposit_yield)

def _deposit_voting(dep, tx, now):
    return _deposit(dep, tx, now, treasury.deposit_voting_rewards)

def _stake(dep, tx, now):
    return staking.stake(dep.pool, dep.accounts, _field(tx, "owner"), _int(tx, "amount"), now)

def _unstake(dep, tx, now):
    return staking.unstake(dep.pool, dep.treasury, dep.accounts,
                           _field(tx, "position_id"), _field(tx, "owner"), now)

def _claim(dep, tx, now):
    return staking.claim_rewards(dep.pool, dep.treasury, dep.accounts,
                                 _field(tx, "position_id"), _field(tx, "owner"), now)

def _submit(dep, tx, now):
    return registry.submit(dep.registry, dep.pool, dep.treasury, dep.accounts,
                           _field(tx, "advertiser"), _int(tx, "stake"), tx.get("content_ref", ""), now)

def _deactivate(dep, tx, now):
    registry.deactivate(dep.registry, _field(tx, "ad_id"), _field(tx, "advertiser"), now)

def _current_epoch(dep: Deployment, tx) -> int:
    if tx.get("epoch") is not None:
        return _int(tx, "epoch")
    with dep.config.lock():
        return dep.config.current_epoch

def _open_voting(dep, tx, now):
    duration = _int(tx, "duration_ms") if tx.get("duration_ms") is not None else None
    ep = voting.open_voting(dep.book, _current_epoch(dep, tx), now, _field(tx, "caller"), duration)
    return ep.epoch

def _close_voting(dep, tx, now):
    voting.close_voting(dep.book, _current_epoch(dep, tx), _field(tx, "caller"), now)

def _cast_vote(dep, tx, now):
    return voting.cast_vote(dep.book, dep.registry, dep.pool, _field(tx, "voter"), _field(tx, "ad_id"),
                            _field(tx, "position_id"), _current_epoch(dep, tx), now)

def _distribute(dep, tx, now):
    return voting.distribute_voting_rewards(dep.book, dep.treasury, _current_epoch(dep, tx),
                                            _int(tx, "amount"), _field(tx, "caller"), now)

def _claim_vote(dep, tx, now):
    vote_id = _field(tx, "vote_id")
    if tx.get("epoch") is not None:
        epoch = _int(tx, "epoch")
    else:
        with dep.book.lock():
            vote = dep.book.votes.get(vote_id)
            if vote is None:
                raise UnknownEntity(f"no vote {vote_id}")
            epoch = vote.epoch
    return voting.claim_voting_reward(dep.book, dep.pool, vote_id, epoch, _field(tx, "voter"), now)

def _pick(dep, tx, now):
    return lottery.pick_winner(dep.config, dep.registry, dep.rng, now, book=dep.book)

def _finalize(dep, tx, now):
    return lottery.finalize_epoch(dep.config, dep.registry, _field(tx, "ad_id"), now).epoch

def _attend(dep, tx, now):
    return verification.register_attendance(dep.session, _field(tx, "ad_id"), _field(tx, "viewer"), now)

def _rotate(dep, tx, now):
    return verification.rotate_session(dep.session, dep.config, dep.treasury, dep.accounts, dep.rng, now)


HANDLERS: Dict[str, Callable[[Deployment, Dict[str, Any], int], Any]] = {
    "Fund":                    _fund,
    "DepositYield":            _deposit_yield,
    "DepositVotingRewards":    _deposit_voting,
    "Stake":                   _stake,
    "Unstake":                 _unstake,
    "ClaimRewards":            _claim,
    "SubmitAd":                _submit,
    "DeactivateAd":            _deactivate,
    "OpenVoting":              _open_voting,
    "CloseVoting":             _close_voting,
    "CastVote":                _cast_vote,
    "DistributeVotingRewards": _distribute,
    "ClaimVotingReward":       _claim_vote,
    "PickWinner":              _pick,
    "FinalizeEpoch":           _finalize,
    "RegisterAttendance":      _attend,
    "RotateSession":           _rotate,
}


def apply_tx(dep: Deployment, tx: Dict[str, Any]) -> Receipt:
    t = tx.get("type")
    handler = HANDLERS.get(t)
    if handler is None:
        return Receipt(ok=False, tx_type=t, code="EUnknownTx", error=f"unknown tx type {t!r}")

    h = tx_hash(tx) if "nonce" in tx else None
    if h is not None:
        with dep._tx_lock:
            if h in dep.applied_txs or h in dep._inflight:
                return Receipt(ok=False, tx_type=t, code="EDuplicateTx", error="tx already applied")
            dep._inflight.add(h)

    ok = False
    try:
        now = _int(tx, "now_ms") if tx.get("now_ms") is not None else dep.now_ms()
        result = handler(dep, tx, now)
        ok = True
    except LottoError as e:
        logger.debug("%s rejected: %s %s", t, e.code, e)
        return Receipt(ok=False, tx_type=t, code=e.code, error=str(e), category=e.category)
    finally:
        if h is not None:
            # the hash leaves the in-flight set only once it is recorded as applied
            with dep._tx_lock:
                if ok:
                    dep.applied_txs.add(h)
                dep._inflight.discard(h)
    return Receipt(ok=True, tx_type=t, result=result)


def conserved_total(dep: Deployment) -> int:
    """Every coin the deployment holds: balances, staked principal and treasury."""
    with hold(dep.pool, dep.treasury, dep.accounts):
        return dep.accounts.total() + dep.pool.staked_balance + treasury.total_held(dep.treasury)
