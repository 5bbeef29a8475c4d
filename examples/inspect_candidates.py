"""Show the code breaker's intermediate tables for one secret.

Runs the probing and refinement phases against the reference arbiter,
then prints the possibility table, the combination tree and the
candidate list the round loop would start from.
"""

import pathlib
import sys

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

import code_breaker
import mastermind

_C = mastermind._Colors


def main() -> None:
    secret = mastermind.Code.from_string(
        " ".join(sys.argv[1:]) or "black green red green black"
    )
    arbiter = mastermind.Arbiter(secret)
    session = code_breaker.GameSession()

    # Drive the phases by hand; a probe can already hit the secret.
    try:
        code_breaker.probe_partitions(session, arbiter.submit)
        code_breaker.count_colors(session, arbiter.submit)
    except code_breaker.GameOver as over:
        print(f"Game ended early: {over.phase.name} in round {session.round}")
        return
    code_breaker.refine_positions(session)

    print(f"{_C.BOLD}Secret:{_C.RESET} {secret}")
    print(f"{_C.BOLD}Probes used:{_C.RESET} {session.round}")
    print()
    print(f"{_C.BOLD}Possibilities (count, slots 0-4):{_C.RESET}")
    print(code_breaker.describe_possibilities(session.possible))
    print()

    tree = code_breaker.build_combination_tree(session.possible)
    print(f"{_C.BOLD}Combination tree ({len(tree)} nodes):{_C.RESET}")
    print(code_breaker.describe_tree(tree))
    print()

    candidates = code_breaker.generate_candidates(tree)
    print(f"{_C.BOLD}Candidates ({len(candidates)}):{_C.RESET}")
    for candidate in candidates:
        marker = " <- secret" if candidate.code == secret else ""
        print(f"  {candidate.code}{marker}")

    session.release()


if __name__ == "__main__":
    main()
