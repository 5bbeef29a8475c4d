"""Benchmark the code breaker across the whole secret space.

Plays every one of the 8^5 secrets (or a seeded random sample of them)
against the in-process reference arbiter and reports how many rounds
the solver needed. Any game that is not won is listed, since the solver
is expected to find every secret well within the arbiter's round limit.
"""

import argparse
import collections
import pathlib
import random
import statistics
import sys

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent))

import code_breaker
import mastermind


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--sample", type=int, default=None,
        help="Play this many random secrets instead of all of them",
    )
    parser.add_argument("--seed", type=int, default=1)
    parser.add_argument(
        "--max-rounds", type=int, default=mastermind.MAX_ROUNDS,
    )
    args = parser.parse_args()

    secrets = list(code_breaker.all_secrets())
    if args.sample is not None:
        secrets = random.Random(args.seed).sample(secrets, args.sample)

    records = code_breaker.simulate_games(
        secrets, max_rounds=args.max_rounds, show_progress=True,
    )

    won = [r.rounds for r in records if r.phase == code_breaker.Phase.WON]
    failed = [r for r in records if r.phase != code_breaker.Phase.WON]

    print()
    print("=" * 60)
    print(f"CODE BREAKER BENCHMARK ({len(records)} games)")
    print("=" * 60)

    if won:
        print(f"\nWon: {len(won)}")
        print(f"  Mean:   {statistics.mean(won):.2f}")
        print(f"  StdDev: {statistics.stdev(won) if len(won) > 1 else 0.0:.2f}")
        print(f"  Min:    {min(won)}")
        print(f"  Median: {statistics.median(won)}")
        print(f"  Max:    {max(won)}")
        print()
        print("  Rounds histogram:")
        histogram = collections.Counter(won)
        for rounds in sorted(histogram):
            share = histogram[rounds] / len(won)
            print(f"    {rounds:>2}: {histogram[rounds]:>6}  {share:6.1%}")

    if failed:
        print(f"\nNot won: {len(failed)}")
        for record in failed[:20]:
            print(f"  {record.secret!r}: {record.phase.name} after {record.rounds}")


if __name__ == "__main__":
    main()
