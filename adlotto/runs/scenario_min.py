# adlotto/runs/scenario_min.py
from __future__ import annotations
import argparse, csv, logging, os, time
from typing import Dict, List

from ..core.apply import Deployment, apply_tx, conserved_total, create_deployment
from ..core.config import load_rules
from ..core.entropy import NumpyRandomness, SimClock, VrfRandomness
from ..core.registry import registry_consistent
from ..core.staking import pool_consistent
from ..roles.advertiser import Advertiser
from ..roles.audience import AudienceMember
from ..roles.keeper import Keeper
from ..storage.content_stub import ContentStore


def give_faucet(dep: Deployment, who: str, amt: int):
    r = apply_tx(dep, {"type": "Fund", "acct": who, "amount": amt})
    assert r.ok, r.error


def fund_treasury(dep: Deployment, yield_reserve: int, voting_reserve: int) -> int:
    minted = 0
    if yield_reserve > 0:
        give_faucet(dep, dep.admin, yield_reserve); minted += yield_reserve
        apply_tx(dep, {"type": "DepositYield", "funder": dep.admin, "amount": yield_reserve})
    if voting_reserve > 0:
        give_faucet(dep, dep.admin, voting_reserve); minted += voting_reserve
        apply_tx(dep, {"type": "DepositVotingRewards", "funder": dep.admin, "amount": voting_reserve})
    return minted


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--rules", type=str, default=None, help="JSON file with deployment rules")
    ap.add_argument("--advertisers", type=int, default=4)
    ap.add_argument("--audience", type=int, default=20)
    ap.add_argument("--ad_stake", type=int, default=50_000)
    ap.add_argument("--voter_stake", type=int, default=5_000)
    ap.add_argument("--apy_bps", type=int, default=None)
    ap.add_argument("--payout", type=int, default=None, help="payout per sampled viewer")
    ap.add_argument("--payout_cap", type=int, default=None)
    ap.add_argument("--selection", choices=["random", "votes"], default=None)
    ap.add_argument("--yield_reserve", type=int, default=2_000_000)
    ap.add_argument("--voting_pool", type=int, default=10_000, help="voting rewards per epoch")
    ap.add_argument("--runtime", type=float, default=6.0, help="seconds to run")
    ap.add_argument("--tick_sec", type=float, default=0.1)
    ap.add_argument("--draw_interval", type=float, default=0.8, help="seconds between keeper cycles")
    ap.add_argument("--withdraw_after", type=int, default=0, help="advertisers withdraw after N claims")
    ap.add_argument("--rng", choices=["vrf", "numpy"], default="vrf")
    ap.add_argument("--seed", type=int, default=None, help="deterministic seed")
    ap.add_argument("--content_fail_rate", type=float, default=0.0)
    ap.add_argument("--csv_out", type=str, default=None, help="append one-line CSV of metrics to this path")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    rules = load_rules(args.rules, apy_bps=args.apy_bps, payout_per_viewer=args.payout,
                       payout_cap=args.payout_cap, winner_selection=args.selection)
    # votes stay open for a few simulated epochs so the audience can reach them
    rules.voting_window_ms = max(rules.voting_window_ms, 5 * rules.epoch_ms)

    seed = args.seed if args.seed is not None else int(time.time())
    if args.rng == "numpy":
        rng = NumpyRandomness(seed)
    else:
        rng = VrfRandomness(secret=b"keeper", seed=f"{seed}|genesis".encode())
    clock = SimClock(start_ms=0)
    dep = create_deployment(rules, admin="admin", rng=rng, clock=clock)
    store = ContentStore(fail_rate=args.content_fail_rate, seed=seed)

    def submit_tx(tx: dict):
        return apply_tx(dep, tx)

    minted_total = fund_treasury(dep, args.yield_reserve,
                                 args.voting_pool * max(1, int(args.runtime / args.draw_interval) + 2))

    advertisers: List[Advertiser] = []
    for i in range(args.advertisers):
        acct = f"A{i+1}"
        budget = args.ad_stake + rules.submission_fee
        give_faucet(dep, acct, budget); minted_total += budget
        adv = Advertiser(acct, dep, store, submit_tx, stake=args.ad_stake,
                         content=f"creative-{i+1}".encode(),
                         withdraw_after_claims=args.withdraw_after)
        adv.start(); advertisers.append(adv)

    audience: List[AudienceMember] = []
    for i in range(args.audience):
        acct = f"U{i+1}"
        if args.voter_stake > 0:
            give_faucet(dep, acct, args.voter_stake); minted_total += args.voter_stake
        m = AudienceMember(acct, dep, store, submit_tx, stake=args.voter_stake, seed=seed + i)
        m.start(); audience.append(m)

    # let ads land before the first draw
    deadline = time.time() + 2.0
    while time.time() < deadline and len(dep.registry.active) < args.advertisers:
        time.sleep(0.05)

    keeper = Keeper(dep, submit_tx=submit_tx, interval_sec=args.draw_interval,
                    manage_voting=True, voting_reward_pool=args.voting_pool)
    keeper.start()

    # clock: one simulated epoch per tick
    t0 = time.time()
    try:
        while time.time() - t0 < args.runtime:
            clock.advance(rules.epoch_ms)
            time.sleep(args.tick_sec)
    finally:
        keeper.stop()
        for m in audience: m.stop()
        for a in advertisers: a.stop()
    keeper.join(timeout=2.0)
    for t in audience + advertisers:
        t.join(timeout=2.0)

    # --- Summary ---
    cfg, sess, tr, pool = dep.config, dep.session, dep.treasury, dep.pool
    conserved = conserved_total(dep)
    pool_ok = pool_consistent(pool)
    registry_ok = registry_consistent(dep.registry)
    with cfg.lock(), sess.lock(), tr.lock():
        print("\n=== SUMMARY ===")
        print("Lottery epoch      :", cfg.current_epoch)
        print("Selection          :", cfg.selection)
        print("Latest winner      :", cfg.latest_confirmed_winner_id)
        print("Pending winner     :", cfg.pending_winner_id)
        wins: Dict[str, int] = {}
        for pw in cfg.past_winners:
            wins[pw.winner_id] = wins.get(pw.winner_id, 0) + 1
        print("Wins by ad         :", ", ".join(f"{k}:{v}" for k, v in sorted(wins.items())) or "-")

        print("\n--- LEDGER ---")
        print("Money minted       :", minted_total)
        print("Balances sum       :", dep.accounts.total())
        print("Staked principal   :", pool.staked_balance)
        print("Yield reserve      :", tr.yield_reserve)
        print("Voting reserve     :", tr.voting_reward_reserve)
        print("Treasury balance   :", tr.balance, f"(fees {tr.fees_collected})")
        print("Conserved money    :", conserved, "OK" if conserved == minted_total else "MISMATCH")
        print("Pool consistent    :", pool_ok)
        print("Registry consistent:", registry_ok)

        print("\n--- SESSION ---")
        print("Generation         :", sess.epoch_counter)
        print("Tracking           :", sess.active_participant_id)
        print("Viewers (current)  :", sess.total_viewers)
        rotations = dep.events.find("SessionRotated")
        paid = sum(e.payload["viewers_paid"] for e in rotations)
        distinct = sum(e.payload["distinct_paid"] for e in rotations)
        print(f"Payouts            : {paid} draws, {distinct} distinct viewers over {len(rotations)} rotations")

        s = keeper.stats
        print("\n--- KEEPER ---")
        print(f"runs={s.total_runs} ok={s.successful_runs} failed={s.failed_runs} "
              f"picked={s.winners_picked} finalized={s.epochs_finalized} last_error={s.last_error_code}")

        print("\n--- EVENTS ---")
        for k, v in sorted(dep.events.counts().items()):
            print(f"  {k}: {v}")

        for a in advertisers:
            print(f"{a.acct}: ad={a.ad_id} claimed={a.claimed_total} withdrawn={a.withdrawn} "
                  f"balance={dep.accounts.balance_of(a.acct)}")
        attended = sum(m.attended for m in audience)
        vote_rewards = sum(m.voting_rewards for m in audience)
        print(f"Audience: attendances={attended} voting_rewards={vote_rewards}")

        if args.csv_out:
            row = {
                "advertisers": args.advertisers,
                "audience": args.audience,
                "selection": cfg.selection,
                "apy_bps": pool.apy_rate_bps,
                "payout": rules.payout_per_viewer,
                "payout_cap": rules.payout_cap,
                "runtime": args.runtime,
                "seed": seed,
                "rng": args.rng,
                "content_fail_rate": args.content_fail_rate,
                "epochs": cfg.current_epoch,
                "generations": sess.epoch_counter,
                "minted": minted_total,
                "conserved_money": conserved,
                "staked": pool.staked_balance,
                "yield_reserve": tr.yield_reserve,
                "voting_reserve": tr.voting_reward_reserve,
                "fees_collected": tr.fees_collected,
                "payout_draws": paid,
                "payout_distinct": distinct,
                "attendances": attended,
                "voting_rewards": vote_rewards,
                "votes_cast": len(dep.events.find("VoteCast")),
                "keeper_runs": s.total_runs,
                "keeper_failed": s.failed_runs,
            }
            exists = os.path.exists(args.csv_out)
            with open(args.csv_out, "a", newline="") as f:
                w = csv.DictWriter(f, fieldnames=list(row.keys()))
                if not exists:
                    w.writeheader()
                w.writerow(row)

if __name__ == "__main__":
    main()
