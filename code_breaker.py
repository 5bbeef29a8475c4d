"""Deduction engine for Mastermind.

Finds the secret code by elimination only, without any randomness or
scoring heuristics.

Architecture:
    Two partition probes bound which half of the palette the secret
    draws from. Monochrome probes then learn every color's exact
    occurrence count, and the partition results narrow the slots each
    color may occupy. From that table a combination tree is built, one
    level per color, whose root-to-leaf paths are complete slot
    assignments. The tree is flattened into an ordered candidate list
    and each round plays the first candidate that agrees with the red
    count of every guess made so far.

All state of one game lives in a ``GameSession`` that ``play_game``
threads through the phases.
"""

from __future__ import annotations

import dataclasses
import enum
import itertools
import logging
from collections.abc import Callable, Iterable, Iterator

import tqdm

import mastermind
from mastermind import ALL_SLOTS, SLOTS, Code, Color, count_set_bits

logger = logging.getLogger(__name__)

_C = mastermind._Colors

# Sends one guess to the arbiter and returns the raw result byte.
Submit = Callable[[Code], int]

# The two fixed partition probes. The first four colors form partition 0,
# the last four partition 1; each probe doubles its first color.
PARTITION_PATTERNS: tuple[tuple[Color, ...], tuple[Color, ...]] = (
    (Color.BEIGE, Color.BEIGE, Color.DARKBLUE, Color.GREEN, Color.ORANGE),
    (Color.RED, Color.RED, Color.BLACK, Color.VIOLET, Color.WHITE),
)
COLORS_PER_PARTITION = 4

# Probed when the fourth color of both partitions is still unresolved.
TIE_BREAK_COLOR = Color.WHITE

# Marks a partition whose count is known to be all five slots while its
# exact matches are not known.
_RED_UNKNOWN = 1


# =============================================================================
# Game phases
# =============================================================================

class Phase(enum.Enum):
    """Where a game session currently is."""
    NEW = enum.auto()
    PARTITION_PROBE = enum.auto()
    COLOR_PROBE = enum.auto()
    POSITION_REFINE = enum.auto()
    TREE_BUILD = enum.auto()
    ROUND_LOOP = enum.auto()
    WON = enum.auto()
    LOST = enum.auto()
    PROTOCOL_ERROR = enum.auto()

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.WON, Phase.LOST, Phase.PROTOCOL_ERROR)


class GameOver(Exception):
    """Raised by ``_commit`` when the arbiter ends the game."""

    def __init__(self, phase: Phase) -> None:
        super().__init__(phase.name)
        self.phase = phase


# =============================================================================
# Session state
# =============================================================================

@dataclasses.dataclass
class PossibilityInfo:
    """What is known about one color.

    Attributes:
        positions: Bitmask of the slots the color may still occupy
            (bit j = slot j).
        count: Known number of occurrences in the secret.
    """
    positions: int = ALL_SLOTS
    count: int = 0

    @property
    def is_relevant(self) -> bool:
        """Whether the color takes part in the combination tree."""
        return self.count > 0

    def exclude(self) -> None:
        """Mark the color as absent from the secret."""
        self.positions = 0
        self.count = 0

    def set_count(self, count: int) -> None:
        if count == 0:
            self.exclude()
        else:
            self.count = count


@dataclasses.dataclass
class PartitionProbe:
    """One partition probe and what has been deduced from it.

    Attributes:
        colors: The probe's slot pattern.
        red: Exact matches of the probe, or the placeholder ``1`` when
            the count was forced to five.
        total: Color matches of the probe (possibly forced).
        hits: Sum of the occurrence counts learned for the partition's
            colors.
    """
    colors: tuple[Color, ...]
    red: int = 0
    total: int = 0
    hits: int = 0

    @property
    def code(self) -> Code:
        return Code(self.colors)

    @property
    def members(self) -> list[Color]:
        """The partition's four colors in palette order."""
        return sorted(set(self.colors))

    def record(self, result: mastermind.GuessResult) -> None:
        self.red = result.red
        self.total = result.total


@dataclasses.dataclass(frozen=True)
class ProcessedGuess:
    """A guess already sent, with the exact matches it received."""
    code: Code
    red: int


@dataclasses.dataclass
class CombinationNode:
    """One way of placing a color's occurrences.

    Attributes:
        color: The color being placed.
        next_color: First color the children may place.
        combination: Slots this color occupies.
        free: Slots still free once this and all ancestor nodes are placed.
        first_child: Arena index of the first node of the next level.
        next_sibling: Arena index of the next alternative for this color.
    """
    color: Color
    next_color: int
    combination: int
    free: int
    first_child: int | None = None
    next_sibling: int | None = None


@dataclasses.dataclass
class CombinationTree:
    """Arena of ``CombinationNode`` objects linked by index."""
    nodes: list[CombinationNode] = dataclasses.field(default_factory=list)
    root: int | None = None

    def add(self, node: CombinationNode) -> int:
        self.nodes.append(node)
        return len(self.nodes) - 1

    def siblings(self, index: int | None) -> Iterator[CombinationNode]:
        """Iterate a sibling chain starting at ``index``."""
        while index is not None:
            node = self.nodes[index]
            yield node
            index = node.next_sibling

    def clear(self) -> None:
        self.nodes.clear()
        self.root = None

    def __len__(self) -> int:
        return len(self.nodes)


@dataclasses.dataclass(frozen=True)
class Candidate:
    """A code still in the running, with its handle in the list."""
    handle: int
    code: Code


class CandidateList:
    """Insertion-ordered candidates with O(1) removal by handle.

    Removing a candidate never changes the order of the others. Iterate
    over a snapshot, ``list(candidates)``, to remove while iterating.
    """

    def __init__(self, codes: Iterable[Code] = ()) -> None:
        self._items: dict[int, Candidate] = {}
        self._handles = itertools.count()
        for code in codes:
            self.append(code)

    def append(self, code: Code) -> Candidate:
        candidate = Candidate(next(self._handles), code)
        self._items[candidate.handle] = candidate
        return candidate

    def remove(self, handle: int) -> None:
        """Remove a candidate.

        Raises:
            KeyError: If the handle is not (or no longer) in the list.
        """
        del self._items[handle]

    def clear(self) -> None:
        self._items.clear()

    def codes(self) -> list[Code]:
        return [c.code for c in self._items.values()]

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, handle: object) -> bool:
        return handle in self._items


@dataclasses.dataclass
class GameSession:
    """All state of one game.

    Attributes:
        round: Guesses submitted so far.
        partitions: The two partition probes.
        possible: One ``PossibilityInfo`` per color, indexed by color.
        tree: Combination tree, only alive during the tree-build phase.
        candidates: Codes still consistent with every result.
        processed: Every submitted guess with its red count, in order.
        phase: Current phase.
        error: Error flags of the last result that carried any.
        released: Whether ``release`` has run.
    """
    round: int = 0
    partitions: list[PartitionProbe] = dataclasses.field(
        default_factory=lambda: [PartitionProbe(p) for p in PARTITION_PATTERNS],
    )
    possible: list[PossibilityInfo] = dataclasses.field(
        default_factory=lambda: [PossibilityInfo() for _ in Color],
    )
    tree: CombinationTree | None = None
    candidates: CandidateList | None = None
    processed: list[ProcessedGuess] = dataclasses.field(default_factory=list)
    phase: Phase = Phase.NEW
    error: mastermind.ArbiterError = mastermind.ArbiterError.NONE
    released: bool = False

    @property
    def known_total(self) -> int:
        """Sum of the occurrence counts learned so far."""
        return sum(info.count for info in self.possible)

    def release(self) -> None:
        """Drop the tree, candidate list and processed guesses.

        Safe to call at any time and any number of times.
        """
        if self.released:
            return
        self.released = True
        if self.tree is not None:
            self.tree.clear()
            self.tree = None
        if self.candidates is not None:
            self.candidates.clear()
            self.candidates = None
        self.processed.clear()
        logger.debug("Session released after %d rounds", self.round)


# =============================================================================
# Submitting guesses
# =============================================================================

def _commit(
    session: GameSession, submit: Submit, code: Code,
) -> mastermind.GuessResult:
    """Send one guess and record it.

    Raises:
        GameOver: If the result ends the game (win or arbiter error).
        mastermind.TransportError: Propagated from ``submit``, or if the
            result byte does not decode.
    """
    session.round += 1
    value = submit(code)
    try:
        result = mastermind.GuessResult.from_byte(value)
    except ValueError as e:
        raise mastermind.TransportError(
            f"Malformed result byte 0x{value:02x} in round {session.round}: {e}"
        ) from e
    session.processed.append(ProcessedGuess(code, result.red))
    logger.debug(
        "Round %d: %r -> red=%d white=%d error=%d",
        session.round, code, result.red, result.white, int(result.error),
    )

    if result.error:
        session.error = result.error
        if result.error & mastermind.ArbiterError.PARITY:
            raise GameOver(Phase.PROTOCOL_ERROR)
        raise GameOver(Phase.LOST)
    if result.is_win:
        raise GameOver(Phase.WON)
    return result


# =============================================================================
# Partition probing
# =============================================================================

def _exclude_partition(session: GameSession, index: int) -> None:
    for color in session.partitions[index].members:
        session.possible[color].exclude()


def probe_partitions(session: GameSession, submit: Submit) -> None:
    """Submit the partition probes and apply the degenerate cases.

    A probe matching all five slots rules out the other partition; a
    probe matching nothing rules out its own partition and forces the
    other one to five. Either case makes the second probe unnecessary.
    """
    for i, probe in enumerate(session.partitions):
        other = 1 - i
        probe.record(_commit(session, submit, probe.code))

        if probe.total == SLOTS:
            session.partitions[other].red = 0
            session.partitions[other].total = 0
            _exclude_partition(session, other)
            return

        if probe.total == 0:
            session.partitions[other].red = _RED_UNKNOWN
            session.partitions[other].total = SLOTS
            _exclude_partition(session, i)
            return


# =============================================================================
# Color counting
# =============================================================================

def count_colors(session: GameSession, submit: Submit) -> None:
    """Learn the occurrence count of every color.

    Probes at most the first three colors of each partition that has any
    matches, then derives the fourth colors from what is missing.
    """
    total = 0
    unresolved = [False, False]

    for i, probe in enumerate(session.partitions):
        if probe.total == 0:
            continue

        found = 0
        members = probe.members
        for j, color in enumerate(members[:COLORS_PER_PARTITION - 1]):
            result = _commit(session, submit, Code.monochrome(color))
            info = session.possible[color]

            if result.total == 0:
                info.exclude()
                continue

            total += result.total
            probe.hits += result.total
            info.set_count(result.total)
            found += 1

            if (
                found == probe.total
                or total == SLOTS
                or (i == 0 and total + session.partitions[1].total == SLOTS)
            ):
                for rest in members[j + 1:]:
                    session.possible[rest].exclude()
                break

        # Each present color adds at least one match to its partition
        # probe, so fewer colors than matches leaves the fourth one open.
        if found < probe.total:
            unresolved[i] = True

    if total == SLOTS:
        for probe in session.partitions:
            session.possible[probe.members[-1]].exclude()
        return

    index = 1
    if unresolved[0]:
        if unresolved[1]:
            result = _commit(session, submit, Code.monochrome(TIE_BREAK_COLOR))
            total += result.total
            session.partitions[1].hits += result.total
            session.possible[TIE_BREAK_COLOR].set_count(result.total)
        index = 0

    probe = session.partitions[index]
    remainder = SLOTS - total
    session.possible[probe.members[-1]].set_count(remainder)
    probe.hits += remainder


# =============================================================================
# Position refinement
# =============================================================================

def refine_positions(session: GameSession) -> None:
    """Narrow each color's possible slots using the partition results."""
    for probe in session.partitions:
        if probe.red == 0:
            # Nothing sat where the probe put it.
            for slot, color in enumerate(probe.colors):
                session.possible[color].positions &= ~(1 << slot)

        elif probe.red == probe.hits:
            # Every occurrence sat exactly where the probe put it.
            for color in probe.members:
                session.possible[color].positions = 0
            for slot, color in enumerate(probe.colors):
                info = session.possible[color]
                if info.count:
                    info.positions |= 1 << slot

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "Possibilities:\n%s", describe_possibilities(session.possible),
        )


# =============================================================================
# Combination tree
# =============================================================================

def next_combination(last: int, allowed: int, count: int) -> int:
    """Smallest mask above ``last`` inside ``allowed`` with ``count`` bits.

    Returns:
        The mask, or 0 once the candidates above ``allowed`` are reached.
    """
    combination = last + 1
    while (
        combination & allowed != combination
        or count_set_bits(combination) != count
    ):
        combination += 1
        if combination > allowed:
            return 0
    return combination


def enumerate_combinations(allowed: int, count: int) -> list[int]:
    """All masks inside ``allowed`` with exactly ``count`` bits, ascending."""
    combinations = []
    if count <= 0:
        return combinations
    combination = next_combination((1 << count) - 2, allowed, count)
    while combination:
        combinations.append(combination)
        combination = next_combination(combination, allowed, count)
    return combinations


def _interleave(combinations: list[int]) -> list[int]:
    """Sibling order: odd-numbered masks go in front, even ones second."""
    order: list[int] = []
    for n, combination in enumerate(combinations):
        if n == 0:
            order.append(combination)
        elif n % 2:
            order.insert(0, combination)
        else:
            order.insert(1, combination)
    return order


def _build_level(
    tree: CombinationTree,
    possible: list[PossibilityInfo],
    free: int,
    start: int,
) -> int | None:
    """Build the sibling chain for the first relevant color from ``start``.

    Returns:
        Arena index of the chain's head, or None if the color cannot be
        placed in the free slots (or no color is left).
    """
    for color in list(Color)[start:]:
        info = possible[color]
        if not info.is_relevant:
            continue

        allowed = info.positions & free
        if not allowed:
            return None

        head: int | None = None
        previous: CombinationNode | None = None
        for combination in _interleave(enumerate_combinations(allowed, info.count)):
            node = CombinationNode(
                color=color,
                next_color=color + 1,
                combination=combination,
                free=free & ~combination,
            )
            index = tree.add(node)
            if color < Color.WHITE and node.free:
                node.first_child = _build_level(
                    tree, possible, node.free, node.next_color,
                )
            if previous is None:
                head = index
            else:
                previous.next_sibling = index
            previous = node
        return head

    return None


def build_combination_tree(possible: list[PossibilityInfo]) -> CombinationTree:
    """Build the tree of every slot assignment allowed by ``possible``.

    Each level places one relevant color; a node's children place the
    next relevant color in the slots it left free.
    """
    tree = CombinationTree()
    tree.root = _build_level(tree, possible, ALL_SLOTS, 0)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "Combination tree: %d nodes\n%s", len(tree), describe_tree(tree),
        )
    return tree


# =============================================================================
# Candidate generation
# =============================================================================

def _walk(
    tree: CombinationTree,
    index: int | None,
    code: Code,
    assigned: int,
    candidates: CandidateList,
) -> None:
    for node in tree.siblings(index):
        placed = code.with_color(node.color, node.combination)
        count = assigned + count_set_bits(node.combination)
        if node.first_child is not None:
            _walk(tree, node.first_child, placed, count, candidates)
        elif count == SLOTS:
            candidates.append(placed)


def generate_candidates(tree: CombinationTree) -> CandidateList:
    """Flatten the tree into candidates, in depth-first preorder.

    Only paths that fill all five slots become candidates.
    """
    candidates = CandidateList()
    _walk(tree, tree.root, Code.blank(), 0, candidates)
    return candidates


# =============================================================================
# Guess selection
# =============================================================================

def is_consistent(code: Code, processed: Iterable[ProcessedGuess]) -> bool:
    """Whether ``code`` reproduces the red count of every processed guess."""
    return all(code.exact_matches(guess.code) == guess.red for guess in processed)


def select_next(
    candidates: CandidateList, processed: list[ProcessedGuess],
) -> Candidate:
    """Pick the first candidate consistent with every processed guess.

    Raises:
        mastermind.InternalConsistencyError: If no candidate fits.
    """
    for candidate in candidates:
        if is_consistent(candidate.code, processed):
            return candidate
    raise mastermind.InternalConsistencyError(
        f"No consistent candidate among {len(candidates)} remaining "
        f"after {len(processed)} guesses"
    )


# =============================================================================
# Game driver
# =============================================================================

def play_game(session: GameSession, submit: Submit) -> Phase:
    """Play one game to the end.

    The session is released before returning, whether the game ended
    normally or a fault propagated.

    Args:
        session: A fresh session.
        submit: Sends one guess and returns the result byte.

    Returns:
        The terminal phase: WON, LOST or PROTOCOL_ERROR.

    Raises:
        mastermind.TransportError: If ``submit`` fails.
        mastermind.InternalConsistencyError: If the candidates run dry.
    """
    try:
        _enter(session, Phase.PARTITION_PROBE)
        probe_partitions(session, submit)

        _enter(session, Phase.COLOR_PROBE)
        count_colors(session, submit)

        _enter(session, Phase.POSITION_REFINE)
        refine_positions(session)

        _enter(session, Phase.TREE_BUILD)
        session.tree = build_combination_tree(session.possible)
        session.candidates = generate_candidates(session.tree)
        session.tree.clear()
        session.tree = None
        logger.info("%d candidates", len(session.candidates))

        _enter(session, Phase.ROUND_LOOP)
        while True:
            candidate = select_next(session.candidates, session.processed)
            _commit(session, submit, candidate.code)
            session.candidates.remove(candidate.handle)
    except GameOver as over:
        session.phase = over.phase
        logger.info("Game over after %d rounds: %s", session.round, over.phase.name)
    finally:
        session.release()
    return session.phase


def _enter(session: GameSession, phase: Phase) -> None:
    session.phase = phase
    logger.info("Round %d: entering %s", session.round, phase.name)


# =============================================================================
# Diagnostics
# =============================================================================

def describe_possibilities(possible: list[PossibilityInfo]) -> str:
    """One line per color: count and possible slots."""
    lines = []
    for color, info in zip(Color, possible):
        slots = "".join(
            "x" if info.positions & (1 << slot) else "." for slot in range(SLOTS)
        )
        lines.append(f"  {color.name.lower():<8} x{info.count}  {slots}")
    return "\n".join(lines)


def describe_tree(tree: CombinationTree) -> str:
    """Indented outline of the tree, one node per line."""
    lines: list[str] = []

    def _describe(index: int | None, depth: int) -> None:
        for node in tree.siblings(index):
            slots = "".join(
                "x" if node.combination & (1 << slot) else "."
                for slot in range(SLOTS)
            )
            lines.append(f"{'  ' * depth}{node.color.name.lower()} {slots}")
            _describe(node.first_child, depth + 1)

    _describe(tree.root, 0)
    return "\n".join(lines)


# =============================================================================
# Simulation
# =============================================================================

@dataclasses.dataclass(frozen=True)
class GameRecord:
    """Outcome of one simulated game."""
    secret: Code
    phase: Phase
    rounds: int


def all_secrets() -> Iterator[Code]:
    """Every possible secret, in packed-value order."""
    for value in range(mastermind.NUM_COLORS ** SLOTS):
        yield Code.unpack(value)


def simulate_games(
    secrets: Iterable[Code],
    max_rounds: int = mastermind.MAX_ROUNDS,
    show_progress: bool = False,
) -> list[GameRecord]:
    """Play each secret against a fresh reference arbiter.

    Args:
        secrets: Secrets to play.
        max_rounds: Round limit of each arbiter.
        show_progress: If True, display a tqdm progress bar.

    Returns:
        One record per secret, in input order.
    """
    secrets = list(secrets)
    records = []
    for secret in tqdm.tqdm(
        secrets, desc="Playing", unit=" games",
        dynamic_ncols=True, disable=not show_progress,
    ):
        arbiter = mastermind.Arbiter(secret, max_rounds=max_rounds)
        session = GameSession()
        phase = play_game(session, arbiter.submit)
        records.append(GameRecord(secret, phase, session.round))
    return records


def print_game_summary(session: GameSession) -> None:
    """Print the outcome of a finished session in color."""
    if session.phase == Phase.WON:
        print(f"{_C.GREEN}{_C.BOLD}Won{_C.RESET} in {session.round} rounds")
    elif session.phase == Phase.LOST:
        print(f"{_C.RED}{_C.BOLD}Lost{_C.RESET} after {session.round} rounds")
    else:
        print(
            f"{_C.ORANGE}{_C.BOLD}{session.phase.name}{_C.RESET}"
            f" after {session.round} rounds (error {int(session.error)})"
        )
