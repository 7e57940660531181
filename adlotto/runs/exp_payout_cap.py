# adlotto/runs/exp_payout_cap.py
"""
How many distinct viewers does one rotation actually pay?

Draws are taken with replacement, so for n viewers and cap c the expected
number of distinct payees is n * (1 - (1 - 1/n) ** min(n, c)).
"""
from __future__ import annotations
import argparse, csv, os
from typing import Dict, List

from ..core import lottery, registry, verification
from ..core.apply import apply_tx, create_deployment
from ..core.entropy import NumpyRandomness, SimClock
from ..core.state import Rules


def run_once(viewers: int, cap: int, payout: int, seed: int) -> Dict[str, float]:
    rules = Rules(payout_cap=cap, payout_per_viewer=payout)
    dep = create_deployment(rules, admin="admin", rng=NumpyRandomness(seed), clock=SimClock())
    now = 0
    apply_tx(dep, {"type": "Fund", "acct": "admin", "amount": cap * payout})
    apply_tx(dep, {"type": "DepositYield", "funder": "admin", "amount": cap * payout})
    apply_tx(dep, {"type": "Fund", "acct": "adv", "amount": rules.min_stake})
    ad = registry.submit(dep.registry, dep.pool, dep.treasury, dep.accounts,
                         "adv", rules.min_stake, "cid-exp", now)

    # first draw only points the session at the ad
    lottery.pick_winner(dep.config, dep.registry, dep.rng, now)
    verification.rotate_session(dep.session, dep.config, dep.treasury, dep.accounts, dep.rng, now)
    lottery.finalize_epoch(dep.config, dep.registry, ad, now)

    for i in range(viewers):
        verification.register_attendance(dep.session, ad, f"V{i}", now)

    lottery.pick_winner(dep.config, dep.registry, dep.rng, now)
    payees = verification.rotate_session(dep.session, dep.config, dep.treasury, dep.accounts,
                                         dep.rng, now)
    draws = len(payees)
    distinct = len(set(payees))
    expected = viewers * (1 - (1 - 1 / viewers) ** draws) if viewers else 0.0
    return {
        "viewers": viewers,
        "cap": cap,
        "seed": seed,
        "draws": draws,
        "distinct": distinct,
        "expected_distinct": round(expected, 3),
        "max_repeat": max((payees.count(p) for p in set(payees)), default=0),
        "paid_total": draws * payout,
    }


def run(viewer_counts: List[int], cap: int = 50, payout: int = 1_000, trials: int = 20,
        seed: int = 0) -> List[Dict[str, float]]:
    rows = []
    for n in viewer_counts:
        for t in range(trials):
            rows.append(run_once(n, cap, payout, seed + 1000 * n + t))
    return rows


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--viewers", type=int, nargs="+", default=[0, 10, 25, 50, 100, 200])
    ap.add_argument("--cap", type=int, default=50)
    ap.add_argument("--payout", type=int, default=1_000)
    ap.add_argument("--trials", type=int, default=20)
    ap.add_argument("--seed", type=int, default=0)
    ap.add_argument("--csv_out", type=str, default=None)
    args = ap.parse_args()

    rows = run(args.viewers, cap=args.cap, payout=args.payout, trials=args.trials, seed=args.seed)
    print("viewers  draws  distinct(mean)  expected  max_repeat")
    for n in args.viewers:
        sub = [r for r in rows if r["viewers"] == n]
        mean_distinct = sum(r["distinct"] for r in sub) / len(sub)
        print(f"{n:7d}  {sub[0]['draws']:5d}  {mean_distinct:14.2f}  {sub[0]['expected_distinct']:8.2f}  "
              f"{max(r['max_repeat'] for r in sub):10d}")

    if args.csv_out:
        exists = os.path.exists(args.csv_out)
        with open(args.csv_out, "a", newline="") as f:
            w = csv.DictWriter(f, fieldnames=list(rows[0].keys()))
            if not exists:
                w.writeheader()
            w.writerows(rows)

if __name__ == "__main__":
    main()
