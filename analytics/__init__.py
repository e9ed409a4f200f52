"""Analytics recomputation over the ledger projection.

Every refresh recomputes the whole snapshot from the store and writes it to
each configured sink. Publishing never interrupts the sync loop: failures
are logged and swallowed.
"""

import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence, Union

from pydantic import BaseModel

from database.models import TopOwner
from database.store import LedgerStore

logger = logging.getLogger(__name__)

TOP_OWNER_LIMIT = 3

class AnalyticsSnapshot(BaseModel):
    total_assets: int
    total_transfers: int
    top_owners: List[TopOwner]

async def compute_snapshot(store: LedgerStore) -> AnalyticsSnapshot:
    """Recompute the analytics snapshot from the store."""
    async with store.session() as session:
        total_assets = await session.count_assets()
        total_transfers = await session.count_transfers()
        top_owners = await session.top_owners(TOP_OWNER_LIMIT)

    return AnalyticsSnapshot(
        total_assets=total_assets,
        total_transfers=total_transfers,
        top_owners=top_owners
    )

def _write_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(content, encoding='utf-8')
    os.replace(tmp_path, path)

class JsonSnapshotSink:
    """Write the snapshot as pretty-printed JSON."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def publish(self, snapshot: AnalyticsSnapshot) -> None:
        _write_atomic(self.path, json.dumps(snapshot.model_dump(), indent=2) + '\n')

class MarkdownSummarySink:
    """Write the snapshot as a human-readable Markdown summary."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @staticmethod
    def render(snapshot: AnalyticsSnapshot) -> str:
        lines = [
            '# SwitchAssets Analytics Summary',
            '## Total Assets Registered',
            str(snapshot.total_assets),
            '## Total Ownership Transfers',
            str(snapshot.total_transfers),
            '## Top 3 Most Active Owners',
        ]
        lines.extend(
            f"- {owner.owner}: {owner.transfer_count} transfers"
            for owner in snapshot.top_owners
        )
        return '\n'.join(lines) + '\n'

    def publish(self, snapshot: AnalyticsSnapshot) -> None:
        _write_atomic(self.path, self.render(snapshot))

class AnalyticsPublisher:
    """Recompute analytics and fan the snapshot out to the sinks."""

    def __init__(self, store: LedgerStore, sinks: Sequence):
        """Initialize the publisher.

        Args:
            store: Store to compute the snapshot from
            sinks: Objects with a publish(snapshot) method
        """
        self.store = store
        self.sinks = list(sinks)

    async def refresh(self) -> Optional[AnalyticsSnapshot]:
        """Recompute and publish the snapshot.

        Returns:
            The published snapshot, or None if it could not be computed
        """
        try:
            snapshot = await compute_snapshot(self.store)
        except Exception as e:
            logger.error(f"Failed to compute analytics: {e}")
            return None

        for sink in self.sinks:
            try:
                sink.publish(snapshot)
            except Exception as e:
                logger.error(f"Failed to publish analytics to {type(sink).__name__}: {e}")

        logger.debug(
            f"Published analytics: {snapshot.total_assets} assets, "
            f"{snapshot.total_transfers} transfers"
        )
        return snapshot

def load_snapshot(path: Union[str, Path]) -> AnalyticsSnapshot:
    """Read a snapshot previously written by JsonSnapshotSink.

    Raises:
        FileNotFoundError: If nothing has been published yet
        ValueError: If the file is not a valid snapshot
    """
    with open(path, encoding='utf-8') as f:
        data = json.load(f)
    return AnalyticsSnapshot.model_validate(data)

# Export public interface
__all__ = [
    'AnalyticsSnapshot',
    'AnalyticsPublisher',
    'JsonSnapshotSink',
    'MarkdownSummarySink',
    'compute_snapshot',
    'load_snapshot'
]
