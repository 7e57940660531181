# adlotto/core/registry.py
from __future__ import annotations
from typing import List
import logging

from .accounts import debit
from .errors import AdInactive, InvalidArgument, NotOwner, UnknownEntity
from .staking import check_stake, open_position
from .state import Accounts, AdRegistry, Advertisement, StakePool, Treasury, hold
from .treasury import collect_fee

logger = logging.getLogger(__name__)


def get_ad(reg: AdRegistry, ad_id: str) -> Advertisement:
    ad = reg.ads.get(ad_id)
    if ad is None:
        raise UnknownEntity(f"no advertisement {ad_id}")
    return ad


def active_ids(reg: AdRegistry) -> List[str]:
    with reg.lock():
        return list(reg.active)


def submit(reg: AdRegistry, pool: StakePool, tr: Treasury, acc: Accounts,
           advertiser: str, stake_amount: int, content_reference: str, now_ms: int) -> str:
    """
    Register an ad together with the stake position backing it.
    Both records are created or neither is.
    """
    if not content_reference:
        raise InvalidArgument("content reference required")
    fee = reg.rules.submission_fee
    with hold(reg, pool, tr, acc):
        check_stake(pool, acc, advertiser, stake_amount, extra=fee)

        ad_id = f"ad-{reg.total_submitted + 1}"
        epoch_now = reg.rules.epoch_of(now_ms)
        if fee > 0:
            debit(acc, advertiser, fee)
            collect_fee(tr, fee, advertiser, now_ms)
        pos = open_position(pool, acc, advertiser, stake_amount, now_ms,
                            linked_participant_id=ad_id)
        reg.ads[ad_id] = Advertisement(
            ad_id=ad_id, advertiser=advertiser, content_reference=content_reference,
            stake_amount=stake_amount, linked_stake_position_id=pos.position_id,
            epoch_created=epoch_now,
        )
        reg.active.append(ad_id)
        reg.total_submitted += 1
        reg.events.emit("AdSubmitted", now_ms, ad_id=ad_id, advertiser=advertiser,
                        stake_amount=stake_amount, position_id=pos.position_id,
                        content_reference=content_reference, epoch=epoch_now)
    logger.info("ad %s submitted by %s (stake=%d)", ad_id, advertiser, stake_amount)
    return ad_id


def deactivate(reg: AdRegistry, ad_id: str, requester: str, now_ms: int):
    """Take an ad out of the draw. Its stake stays put until unstaked separately."""
    with reg.lock():
        ad = get_ad(reg, ad_id)
        if requester != ad.advertiser:
            raise NotOwner(f"{requester} is not the advertiser of {ad_id}")
        if not ad.is_active:
            raise AdInactive(f"{ad_id} is already inactive")
        ad.is_active = False
        reg.active.remove(ad_id)
        reg.events.emit("AdDeactivated", now_ms, ad_id=ad_id, advertiser=requester,
                        epoch=reg.rules.epoch_of(now_ms))
    logger.info("ad %s deactivated", ad_id)


def mark_winner(ad: Advertisement, epoch: int):
    logger.debug("ad %s wins epoch %d", ad.ad_id, epoch)
    ad.wins_count += 1
    ad.is_unsealed = True


def registry_consistent(reg: AdRegistry) -> bool:
    with reg.lock():
        if len(set(reg.active)) != len(reg.active):
            return False
        return all(a in reg.ads and reg.ads[a].is_active for a in reg.active)
