"""Tests for block range planning."""

import pytest

from sync.chunks import plan_chunks, backfill_window

def test_backfill_window_of_1000_blocks_respects_range_limit():
    """Test the trailing 1000-block window with a 499-block provider limit.

    The inclusive window spans 1001 blocks, so it needs three chunks rather
    than two: a second chunk of [latest - 500, latest] would span 500 blocks
    and exceed the provider limit.
    """
    latest = 20_000
    from_block, to_block = backfill_window(latest, 1000)
    chunks = list(plan_chunks(from_block, to_block, 499))

    assert chunks[0] == (latest - 1000, latest - 1000 + 499)
    assert chunks[1] == (latest - 500, latest - 1)
    assert chunks[-1] == (latest, latest)
    assert all(end - start <= 499 for start, end in chunks)

def test_chunks_cover_interval_exactly():
    """Test that chunks are contiguous, ordered and cover every block once."""
    chunks = list(plan_chunks(17, 2048, 100))

    assert chunks[0][0] == 17
    assert chunks[-1][1] == 2048
    for (_, prev_end), (start, _) in zip(chunks, chunks[1:]):
        assert start == prev_end + 1
    covered = [block for start, end in chunks for block in range(start, end + 1)]
    assert covered == list(range(17, 2049))

def test_narrow_window_yields_single_chunk():
    assert list(plan_chunks(10, 50, 499)) == [(10, 50)]

def test_single_block_window():
    assert list(plan_chunks(7, 7, 499)) == [(7, 7)]

def test_empty_interval_yields_nothing():
    assert list(plan_chunks(11, 10, 499)) == []

def test_zero_range_yields_one_block_per_chunk():
    assert list(plan_chunks(3, 5, 0)) == [(3, 3), (4, 4), (5, 5)]

def test_negative_range_rejected():
    with pytest.raises(ValueError):
        plan_chunks(0, 10, -1)

def test_planning_is_restartable():
    """Test that planning the same interval twice yields the same sequence."""
    assert list(plan_chunks(0, 1500, 499)) == list(plan_chunks(0, 1500, 499))

def test_planning_is_lazy():
    chunks = plan_chunks(0, 10 ** 12, 499)
    assert next(chunks) == (0, 499)
    assert next(chunks) == (500, 999)

def test_backfill_window_clamps_at_genesis():
    assert backfill_window(300, 1000) == (0, 300)
