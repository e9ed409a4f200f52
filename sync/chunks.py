"""Block range planning for bounded eth_getLogs queries."""

from typing import Iterator, Tuple

def _iter_chunks(from_block: int, to_block: int, max_range: int) -> Iterator[Tuple[int, int]]:
    start = from_block
    while start <= to_block:
        end = min(start + max_range, to_block)
        yield start, end
        start = end + 1

def plan_chunks(from_block: int, to_block: int, max_range: int) -> Iterator[Tuple[int, int]]:
    """Split [from_block, to_block] into inclusive ranges.

    Each range satisfies end - start <= max_range; ranges are contiguous,
    non-overlapping and strictly increasing. An empty interval yields nothing.
    The ranges are produced lazily.

    Args:
        from_block: First block, inclusive
        to_block: Last block, inclusive
        max_range: Largest allowed end - start for a single query

    Raises:
        ValueError: If max_range is negative
    """
    if max_range < 0:
        raise ValueError(f"max_range must be >= 0, got {max_range}")
    return _iter_chunks(from_block, to_block, max_range)

def backfill_window(latest_block: int, history_window: int) -> Tuple[int, int]:
    """Return the inclusive block range of the trailing history window."""
    return max(latest_block - history_window, 0), latest_block

# Export public interface
__all__ = [
    'plan_chunks',
    'backfill_window'
]
