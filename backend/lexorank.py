"""
AgileFlow - Rank Allocator
Lexorank-style fractional ranks for drag-and-drop ordering of board cards.

Ranks are strings over the base-36 alphabet 0-9A-Z. Sorting ranks
lexicographically gives the display order, so a card can be placed between
two neighbours by generating a string that sorts between theirs, without
renumbering anything else in the column.
"""

from typing import List, Optional, Sequence

from errors import InvalidRank, OrderCorruption, RankExhausted

ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
BASE = len(ALPHABET)
MIN_CHAR = ALPHABET[0]
MAX_CHAR = ALPHABET[-1]
MID_CHAR = "U"
DEFAULT_SCALE = 6

# Minimum numeric distance between neighbours produced by spread()
_MIN_SPREAD_GAP = 3

_DIGITS = {c: i for i, c in enumerate(ALPHABET)}


def _digit(ch: str) -> int:
    return _DIGITS[ch]


def _encode(value: int, length: int) -> str:
    chars = []
    for _ in range(length):
        value, rem = divmod(value, BASE)
        chars.append(ALPHABET[rem])
    return "".join(reversed(chars))


class RankAllocator:
    """Pure, deterministic rank generation. No I/O."""

    def __init__(self, scale: int = DEFAULT_SCALE):
        if scale < 1:
            raise ValueError("scale must be at least 1")
        self.scale = scale

    def initial_rank(self) -> str:
        return MID_CHAR * self.scale

    def min_rank(self) -> str:
        return MIN_CHAR * self.scale

    def max_rank(self) -> str:
        return MAX_CHAR * self.scale

    # ── Validation ───────────────────────────────────────────

    @staticmethod
    def normalize(rank: Optional[str]) -> str:
        """Canonical (uppercase) form of a rank; raises InvalidRank on bad input."""
        if not rank:
            raise InvalidRank("rank must not be empty")
        canonical = rank.upper()
        for ch in canonical:
            if ch not in _DIGITS:
                raise InvalidRank(f"invalid character {ch!r} in rank {rank!r}")
        return canonical

    def validate_sequence(self, ranks: Sequence[str]) -> None:
        """Raise unless every rank is well-formed and the sequence strictly increases."""
        previous = None
        for position, rank in enumerate(ranks):
            current = self.normalize(rank)
            if previous is not None and current <= previous:
                raise OrderCorruption(
                    f"rank at position {position} ({current}) does not sort after {previous}",
                    position=position,
                )
            previous = current

    def is_valid_sequence(self, ranks: Sequence[str]) -> bool:
        try:
            self.validate_sequence(ranks)
        except (InvalidRank, OrderCorruption):
            return False
        return True

    # ── Generation ───────────────────────────────────────────

    def between(self, prev: Optional[str] = None, next: Optional[str] = None) -> str:
        """Return a rank strictly between prev and next.

        A missing prev means "before everything", a missing next means
        "after everything". The walk goes from the most significant position
        down: the first position with room for a midpoint ends the rank;
        positions that are one apart release the upper bound; once the lower
        bound is exhausted with no upper bound left, a midpoint digit is
        appended, so the result grows by one character instead of failing.
        """
        if prev is None and next is None:
            return self.initial_rank()

        low = self.normalize(prev) if prev is not None else ""
        high = self.normalize(next) if next is not None else None
        if high is not None and low >= high:
            raise RankExhausted(f"no rank exists between {low} and {high}", prev=low, next=high)

        out: List[str] = []
        bounded = high is not None
        i = 0
        while True:
            lo = _digit(low[i]) if i < len(low) else 0

            if not bounded and i >= len(low):
                out.append(MID_CHAR)
                break

            if bounded:
                if i >= len(high):
                    # high equals low padded with MIN_CHAR, nothing sorts in between
                    raise RankExhausted(
                        f"no rank exists between {low} and {high}", prev=low, next=high,
                    )
                hi = _digit(high[i])
            else:
                hi = BASE

            gap = hi - lo
            if gap >= 2:
                out.append(ALPHABET[(lo + hi) // 2])
                break

            out.append(ALPHABET[lo])
            if gap == 1:
                bounded = False
            i += 1

        return "".join(out)

    def insert_at(self, index: int, existing: Sequence[str]) -> str:
        """Rank for a new item placed at `index` in an ordered rank list."""
        if not existing:
            return self.initial_rank()
        index = max(0, min(index, len(existing)))
        prev = existing[index - 1] if index > 0 else None
        nxt = existing[index] if index < len(existing) else None
        return self.between(prev, nxt)

    def spread(self, count: int) -> List[str]:
        """`count` fixed-length ranks spaced uniformly between the min and max strings."""
        if count <= 0:
            return []
        length = self.scale
        while BASE ** length // (count + 1) < _MIN_SPREAD_GAP:
            length += 1
        step = BASE ** length // (count + 1)

        ranks = []
        for i in range(1, count + 1):
            value = i * step
            if value % BASE == 0:
                value += 1  # keep the last digit off MIN_CHAR
            ranks.append(_encode(value, length))
        return ranks

    @staticmethod
    def _too_close(a: str, b: str) -> bool:
        if len(a) != len(b) or a[:-1] != b[:-1]:
            return False
        return abs(_digit(b[-1]) - _digit(a[-1])) <= 1

    def needs_rebalance(self, ranks: Sequence[str]) -> bool:
        if not self.is_valid_sequence(ranks):
            return True
        canonical = [r.upper() for r in ranks]
        return any(self._too_close(a, b) for a, b in zip(canonical, canonical[1:]))

    def rebalance(self, ranks: Sequence[str]) -> List[str]:
        """Redistribute ranks uniformly when neighbours got too close.

        Input order is preserved. Sequences that are fine are returned
        unchanged (in canonical form), so rebalance(rebalance(s)) == rebalance(s).
        """
        if not ranks:
            return []
        if self.needs_rebalance(ranks):
            return self.spread(len(ranks))
        return [r.upper() for r in ranks]


allocator = RankAllocator()
