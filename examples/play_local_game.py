"""Play one game against the in-process reference arbiter.

Shows every guess the code breaker sends with the arbiter's answer,
followed by the outcome. Pass a secret as color names to play it,
e.g. ``python examples/play_local_game.py red green green beige white``.
"""

import pathlib
import sys

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

import code_breaker
import mastermind

_C = mastermind._Colors

DEFAULT_SECRET = "red green green beige white"


def main() -> None:
    secret = mastermind.Code.from_string(
        " ".join(sys.argv[1:]) or DEFAULT_SECRET
    )
    arbiter = mastermind.Arbiter(secret)

    print("=" * 60)
    print(f"Secret: {secret}")
    print("=" * 60)
    print()

    session = code_breaker.GameSession()
    code_breaker.play_game(session, arbiter.submit)

    for n, (guess, result) in enumerate(arbiter.history, start=1):
        pegs = (
            f"{_C.RED}{'●' * result.red}{_C.RESET}"
            f"{'○' * result.white}"
        )
        print(f"  {n:>2}. {guess}   {pegs}")
    print()
    code_breaker.print_game_summary(session)


if __name__ == "__main__":
    main()
