# tests/test_lexorank.py — Rank allocator
import pytest

from errors import InvalidRank, OrderCorruption, RankExhausted
from lexorank import RankAllocator, allocator


def test_initial_rank_is_midpoint():
    assert allocator.between(None, None) == "UUUUUU"
    assert allocator.insert_at(0, []) == "UUUUUU"


def test_between_sorts_strictly_inside():
    for prev, nxt in [("A", "C"), ("A", "B"), ("AZ", "B"), ("0001", "0002"), ("U", "U1")]:
        rank = allocator.between(prev, nxt)
        assert prev < rank < nxt, (prev, nxt, rank)


def test_between_open_ends():
    assert allocator.between("UUUUUU", None) > "UUUUUU"
    assert allocator.between(None, "UUUUUU") < "UUUUUU"
    # Appending after the maximum grows the rank instead of failing
    top = allocator.between("ZZZZZZ", None)
    assert top > "ZZZZZZ"


def test_between_accepts_lowercase():
    assert allocator.between("a", "c") == "B"


def test_between_rejects_inverted_or_equal_bounds():
    with pytest.raises(RankExhausted):
        allocator.between("C", "A")
    with pytest.raises(RankExhausted):
        allocator.between("B", "B")


def test_between_nothing_fits_before_zero_padding():
    with pytest.raises(RankExhausted):
        allocator.between("A", "A0")
    with pytest.raises(RankExhausted):
        allocator.between(None, "0")


def test_normalize_rejects_bad_characters():
    with pytest.raises(InvalidRank):
        allocator.normalize("AB-C")
    with pytest.raises(InvalidRank):
        allocator.normalize("")


def test_repeated_inserts_at_front_stay_ordered():
    ranks = [allocator.initial_rank()]
    for _ in range(200):
        ranks.insert(0, allocator.insert_at(0, ranks))
    assert ranks == sorted(ranks)
    assert len(set(ranks)) == len(ranks)


def test_repeated_inserts_between_same_pair():
    low, high = "U", "V"
    for _ in range(50):
        mid = allocator.between(low, high)
        assert low < mid < high
        high = mid


def test_spread_is_strictly_increasing_fixed_length():
    ranks = allocator.spread(1000)
    assert len(ranks) == 1000
    assert ranks == sorted(ranks)
    assert len(set(ranks)) == 1000
    assert len({len(r) for r in ranks}) == 1
    assert not any(r.endswith("0") for r in ranks)


def test_validate_sequence():
    allocator.validate_sequence(["A", "B", "C"])
    allocator.validate_sequence([])
    with pytest.raises(OrderCorruption):
        allocator.validate_sequence(["A", "A"])
    with pytest.raises(OrderCorruption):
        allocator.validate_sequence(["B", "A"])
    assert not allocator.is_valid_sequence(["A", "b?"])


def test_rebalance_is_idempotent():
    crowded = ["U", "U1", "U2", "U3"]
    assert allocator.needs_rebalance(crowded)
    once = allocator.rebalance(crowded)
    assert once == sorted(once)
    assert allocator.rebalance(once) == once
    assert not allocator.needs_rebalance(once)


def test_rebalance_keeps_healthy_sequences():
    healthy = ["A", "K", "u"]
    assert allocator.rebalance(healthy) == ["A", "K", "U"]


def test_scale_must_be_positive():
    with pytest.raises(ValueError):
        RankAllocator(scale=0)
    assert RankAllocator(scale=3).initial_rank() == "UUU"
