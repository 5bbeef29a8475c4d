"""Mastermind game model.

Core types for the 8-color / 5-slot code-breaking game: colors, codes,
guess results, the 2-byte guess / 1-byte result wire format, and a
reference arbiter that scores guesses the way a game server does.
"""

from __future__ import annotations

import collections
import dataclasses
import enum


# =============================================================================
# Constants
# =============================================================================

SLOTS = 5
COLOR_WIDTH = 3
NUM_COLORS = 1 << COLOR_WIDTH

# Bitmask with one bit per slot (bit j = slot j).
ALL_SLOTS = (1 << SLOTS) - 1

# Wire sizes in bytes.
REQUEST_WIDTH = 2
RESPONSE_WIDTH = 1

_PARITY_BIT = 1 << (SLOTS * COLOR_WIDTH)
_COLOR_MASK = (1 << COLOR_WIDTH) - 1

# Rounds the reference arbiter grants before the game is lost.
MAX_ROUNDS = 35


# =============================================================================
# ANSI Color Constants
# =============================================================================

class _Colors:
    """ANSI escape codes for terminal coloring."""
    BLUE = "\033[94m"
    RED = "\033[91m"
    YELLOW = "\033[93m"
    GREEN = "\033[92m"
    ORANGE = "\033[38;5;208m"
    DIM = "\033[2m"
    BOLD = "\033[1m"
    RESET = "\033[0m"


# =============================================================================
# Errors
# =============================================================================

class MastermindError(Exception):
    """Base class for fatal errors raised while playing a game."""


class TransportError(MastermindError):
    """The channel to the arbiter failed (connect, read or write)."""


class InternalConsistencyError(MastermindError):
    """No remaining candidate fits the results seen so far.

    Only a defect in the deduction phases can cause this; it is never
    retried.
    """


# =============================================================================
# Enums
# =============================================================================

class Color(enum.IntEnum):
    """Peg color. The order is part of the wire format."""
    BEIGE = 0
    DARKBLUE = 1
    GREEN = 2
    ORANGE = 3
    RED = 4
    BLACK = 5
    VIOLET = 6
    WHITE = 7

    def ansi(self) -> str:
        """Returns the ANSI color code used to display this color."""
        return {
            Color.BEIGE: _Colors.YELLOW,
            Color.DARKBLUE: _Colors.BLUE,
            Color.GREEN: _Colors.GREEN,
            Color.ORANGE: _Colors.ORANGE,
            Color.RED: _Colors.RED,
            Color.BLACK: _Colors.DIM,
            Color.VIOLET: _Colors.BLUE,
            Color.WHITE: _Colors.BOLD,
        }[self]

    @classmethod
    def from_name(cls, name: str) -> Color:
        """Look up a color by its case-insensitive name.

        Raises:
            ValueError: If no color has that name.
        """
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown color: {name!r}") from None


class ArbiterError(enum.IntFlag):
    """Error bits (6-7) of a result byte.

    Both bits set is the arbiter's "multiple errors" answer.
    """
    NONE = 0
    PARITY = 1
    GAME_LOST = 2


# =============================================================================
# Bit helpers
# =============================================================================

def count_set_bits(num: int, length: int = SLOTS) -> int:
    """Count the set bits among the lowest ``length`` bits of ``num``."""
    return bin(num & ((1 << length) - 1)).count("1")


def compute_parity(value: int) -> int:
    """XOR over the 15 color bits of a packed guess.

    Args:
        value: Packed guess; the parity bit itself is ignored.

    Returns:
        0 or 1.
    """
    parity = 0
    for _ in range(SLOTS * COLOR_WIDTH):
        parity ^= value & 1
        value >>= 1
    return parity


# =============================================================================
# Code
# =============================================================================

@dataclasses.dataclass(frozen=True)
class Code:
    """A guess or secret: exactly five colors, slot 0 first.

    Attributes:
        slots: The colors in slot order.
    """
    slots: tuple[Color, ...]

    def __post_init__(self) -> None:
        if len(self.slots) != SLOTS:
            raise ValueError(
                f"A code has {SLOTS} slots, got {len(self.slots)}"
            )
        try:
            colors = tuple(Color(c) for c in self.slots)
        except ValueError:
            raise ValueError(f"Invalid color in code: {self.slots!r}") from None
        object.__setattr__(self, "slots", colors)

    @classmethod
    def of(cls, *colors: Color | int) -> Code:
        """Build a code from five colors given as arguments."""
        return cls(tuple(colors))

    @classmethod
    def monochrome(cls, color: Color | int) -> Code:
        """A code with the same color in every slot."""
        return cls((color,) * SLOTS)

    @classmethod
    def blank(cls) -> Code:
        """The all-beige code (packed value 0)."""
        return cls.monochrome(Color.BEIGE)

    @classmethod
    def from_string(cls, text: str) -> Code:
        """Parse a code from color names separated by spaces or commas.

        Example: ``"beige, beige, darkblue, green, orange"``.

        Raises:
            ValueError: On unknown names or a wrong number of slots.
        """
        names = [n for n in text.replace(",", " ").split() if n]
        if not names:
            raise ValueError("Code string is empty")
        return cls(tuple(Color.from_name(n) for n in names))

    @classmethod
    def unpack(cls, value: int) -> Code:
        """Decode the 15 color bits of a packed guess (bit 15 ignored)."""
        return cls(tuple(
            Color((value >> (slot * COLOR_WIDTH)) & _COLOR_MASK)
            for slot in range(SLOTS)
        ))

    def pack(self) -> int:
        """Pack the colors into 5 three-bit fields, slot 0 in bits 0-2."""
        value = 0
        for slot, color in enumerate(self.slots):
            value |= int(color) << (slot * COLOR_WIDTH)
        return value

    def exact_matches(self, other: Code) -> int:
        """Number of slots holding the same color in both codes."""
        return sum(1 for a, b in zip(self.slots, other.slots) if a == b)

    def with_color(self, color: Color | int, mask: int) -> Code:
        """Copy of this code with ``color`` in every slot set in ``mask``."""
        return Code(tuple(
            Color(color) if mask & (1 << slot) else current
            for slot, current in enumerate(self.slots)
        ))

    def __str__(self) -> str:
        return " ".join(
            f"{c.ansi()}{c.name.lower()}{_Colors.RESET}" for c in self.slots
        )

    def __repr__(self) -> str:
        return f"Code({', '.join(c.name for c in self.slots)})"


# =============================================================================
# Wire format
# =============================================================================

def encode_guess(code: Code) -> bytes:
    """Encode a guess as its 2-byte request, low byte first.

    Bit 15 carries the XOR of bits 0-14, so the whole word has even
    parity.
    """
    value = code.pack()
    value |= compute_parity(value) << 15
    return value.to_bytes(REQUEST_WIDTH, "little")


def decode_guess(data: bytes) -> tuple[Code, bool]:
    """Decode a 2-byte request.

    Returns:
        The guessed code and whether its parity bit is correct.

    Raises:
        ValueError: If ``data`` is not exactly two bytes long.
    """
    if len(data) != REQUEST_WIDTH:
        raise ValueError(
            f"A guess is {REQUEST_WIDTH} bytes, got {len(data)}"
        )
    value = int.from_bytes(data, "little")
    parity_ok = bool(value & _PARITY_BIT) == bool(compute_parity(value))
    return Code.unpack(value), parity_ok


@dataclasses.dataclass(frozen=True)
class GuessResult:
    """The arbiter's answer to one guess.

    Attributes:
        red: Slots where guess and secret agree in color and position.
        white: Further color matches at other positions.
        error: Error flags reported by the arbiter.
    """
    red: int
    white: int
    error: ArbiterError = ArbiterError.NONE

    def __post_init__(self) -> None:
        if not (
            0 <= self.red <= SLOTS
            and 0 <= self.white <= SLOTS
            and self.red + self.white <= SLOTS
        ):
            raise ValueError(
                f"Invalid result: red={self.red}, white={self.white}"
            )
        object.__setattr__(self, "error", ArbiterError(self.error))

    @property
    def total(self) -> int:
        """Color matches regardless of position."""
        return self.red + self.white

    @property
    def is_win(self) -> bool:
        return self.red == SLOTS

    @classmethod
    def from_byte(cls, value: int) -> GuessResult:
        """Decode a result byte: red in bits 0-2, white 3-5, error 6-7."""
        if not 0 <= value <= 0xFF:
            raise ValueError(f"Result byte out of range: {value}")
        return cls(
            red=value & 0x7,
            white=(value >> 3) & 0x7,
            error=ArbiterError(value >> 6),
        )

    def to_byte(self) -> int:
        return self.red | (self.white << 3) | (int(self.error) << 6)


def score(secret: Code, guess: Code) -> GuessResult:
    """Score ``guess`` against ``secret``.

    White pegs count, per color, the smaller of the two occurrence counts
    among the slots that are not exact matches.
    """
    red = 0
    unmatched_secret: collections.Counter[Color] = collections.Counter()
    unmatched_guess: collections.Counter[Color] = collections.Counter()
    for s, g in zip(secret.slots, guess.slots):
        if s == g:
            red += 1
        else:
            unmatched_secret[s] += 1
            unmatched_guess[g] += 1
    white = sum(
        min(count, unmatched_guess[color])
        for color, count in unmatched_secret.items()
    )
    return GuessResult(red=red, white=white)


# =============================================================================
# Reference arbiter
# =============================================================================

@dataclasses.dataclass
class Arbiter:
    """In-process stand-in for the game server.

    Scores each request against the secret, flags parity mismatches and
    declares the game lost once ``max_rounds`` guesses went by without a
    win.

    Attributes:
        secret: The code to be found.
        max_rounds: Guesses allowed before the game is lost.
        rounds: Guesses answered so far.
        history: Every answered guess with its result, in order.
    """
    secret: Code
    max_rounds: int = MAX_ROUNDS
    rounds: int = 0
    history: list[tuple[Code, GuessResult]] = dataclasses.field(
        default_factory=list,
    )

    def respond(self, request: bytes) -> bytes:
        """Answer one 2-byte request with a 1-byte result."""
        guess, parity_ok = decode_guess(request)
        self.rounds += 1
        result = score(self.secret, guess)
        error = ArbiterError.NONE
        if not parity_ok:
            error |= ArbiterError.PARITY
        if not result.is_win and self.rounds >= self.max_rounds:
            error |= ArbiterError.GAME_LOST
        result = dataclasses.replace(result, error=error)
        self.history.append((guess, result))
        return bytes([result.to_byte()])

    def submit(self, code: Code) -> int:
        """Round-trip ``code`` through the wire format; returns the result byte."""
        return self.respond(encode_guess(code))[0]
