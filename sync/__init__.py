"""Sync orchestrator reconciling historical backfill with the live stream.

The orchestrator is an explicit state machine holding one state at a time:

    Starting -> Backfilling(from_block, latest_block) -> Streaming(from_block)

Transient ledger failures in any state move it to Recovering(delay, resume),
which waits and then re-enters the resume state. Decode and domain errors
skip the offending event. Anything else is fatal and propagates out of run().

Events are applied strictly one at a time and analytics are refreshed after
every applied event.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Dict, Optional, Tuple, Union

from analytics import AnalyticsPublisher
from database.store import LedgerStore
from events import (
    AssetRegistered,
    DecodeError,
    EventKind,
    LedgerEvent,
    OwnershipTransferred,
    decode_event,
    decode_events,
    event_order
)
from projector import LedgerProjector
from rpc import AssetNotFound, LedgerError, SwitchAssetsClient
from .chunks import backfill_window, plan_chunks

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class Starting:
    pass

@dataclass(frozen=True)
class Backfilling:
    from_block: int
    latest_block: int

@dataclass(frozen=True)
class Streaming:
    from_block: int

@dataclass(frozen=True)
class Recovering:
    delay: float
    resume: Union[Starting, Backfilling, Streaming]

SyncState = Union[Starting, Backfilling, Streaming, Recovering]

async def _next_log(stream: AsyncIterator[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return None

def classify_error(exc: BaseException) -> str:
    """Classify an exception raised while syncing.

    Returns:
        'transient' (retry after backoff), 'decode' or 'domain' (skip the
        event) or 'fatal' (propagate)
    """
    if isinstance(exc, DecodeError):
        return 'decode'
    if isinstance(exc, AssetNotFound):
        return 'domain'
    if isinstance(exc, LedgerError) and exc.transient:
        return 'transient'
    return 'fatal'

class SyncCursor:
    """Highest block whose events are all applied."""

    def __init__(self, store: LedgerStore, persist: bool = True):
        """Initialize the cursor.

        Args:
            store: Store holding the sync_cursor row
            persist: Keep the cursor in the database across restarts
        """
        self.store = store
        self.persist = persist
        self.last_block: Optional[int] = None

    async def load(self) -> Optional[int]:
        if self.persist:
            async with self.store.session() as session:
                stored = await session.get_cursor()
            if stored is not None and (self.last_block is None or stored > self.last_block):
                self.last_block = stored
        return self.last_block

    async def advance(self, block: int) -> None:
        """Move the cursor forward; it never moves backwards."""
        if block < 0 or (self.last_block is not None and block <= self.last_block):
            return

        self.last_block = block
        if self.persist:
            async with self.store.unit_of_work() as session:
                await session.save_cursor(block)

class SyncOrchestrator:
    """Drive the backfill and live stream into the projection."""

    def __init__(
        self,
        ledger: SwitchAssetsClient,
        projector: LedgerProjector,
        publisher: AnalyticsPublisher,
        cursor: SyncCursor,
        history_window: int = 1000,
        max_block_range: int = 499,
        retry_delay: float = 5.0
    ):
        """Initialize the orchestrator.

        Args:
            ledger: Ledger client for block numbers, log queries and the subscription
            projector: Applies decoded events to the store
            publisher: Refreshed after every applied event
            cursor: Tracks the highest fully applied block
            history_window: Number of trailing blocks to backfill on start
            max_block_range: Provider limit on toBlock - fromBlock per log query
            retry_delay: Seconds to wait in Recovering before resuming
        """
        self.ledger = ledger
        self.projector = projector
        self.publisher = publisher
        self.cursor = cursor
        self.history_window = history_window
        self.max_block_range = max_block_range
        self.retry_delay = retry_delay

        self.state: SyncState = Starting()
        self._resume: SyncState = self.state
        self._stop = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Request shutdown; run() returns once the current wait is aborted."""
        if not self._stop.is_set():
            logger.info("Stopping sync orchestrator")
        self._stop.set()

    async def run(self) -> None:
        """Run the state machine until stop() is called or a fatal error occurs."""
        logger.info("Sync orchestrator started")
        while not self._stop.is_set():
            try:
                next_state = await self._step(self.state)
            except Exception as e:
                if classify_error(e) != 'transient':
                    logger.error(f"Fatal error in {type(self.state).__name__}: {e}")
                    raise
                logger.warning(
                    f"Transient failure in {type(self.state).__name__}: {e}; "
                    f"retrying in {self.retry_delay}s"
                )
                next_state = Recovering(self.retry_delay, self._resume)

            if next_state is None:
                break
            self.state = next_state

        logger.info("Sync orchestrator stopped")

    async def _step(self, state: SyncState) -> Optional[SyncState]:
        if isinstance(state, Starting):
            return await self._start()
        if isinstance(state, Backfilling):
            return await self._backfill(state)
        if isinstance(state, Streaming):
            return await self._stream(state)
        if isinstance(state, Recovering):
            return await self._recover(state)
        raise TypeError(f"Unknown sync state: {state!r}")

    async def _race(self, aw: Awaitable) -> Tuple[bool, Any]:
        """Await aw unless stop() is called first.

        Returns:
            (True, result) when aw completed, (False, None) when stopped
        """
        task = asyncio.ensure_future(aw)
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            done, _ = await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return True, task.result()

        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Ignoring error from call aborted by shutdown: {e}")
        return False, None

    async def _apply(self, event: LedgerEvent) -> bool:
        try:
            applied = await self.projector.apply(event)
        except Exception as e:
            if classify_error(e) not in ('decode', 'domain'):
                raise
            logger.warning(f"Skipping {type(event).__name__} in tx {event.txn_hash}: {e}")
            return False

        if applied:
            await self.publisher.refresh()
        return applied

    async def _start(self) -> Optional[SyncState]:
        self._resume = Starting()

        completed, latest = await self._race(self.ledger.latest_block())
        if not completed:
            return None

        from_block, to_block = backfill_window(latest, self.history_window)
        last_block = await self.cursor.load()
        if last_block is not None and last_block + 1 > from_block:
            logger.info(f"Resuming after persisted cursor at block {last_block}")
            from_block = last_block + 1

        logger.info(f"Latest block {latest}; backfilling blocks {from_block}-{to_block}")
        return Backfilling(from_block, to_block)

    async def _backfill(self, state: Backfilling) -> Optional[SyncState]:
        for start, end in plan_chunks(state.from_block, state.latest_block, self.max_block_range):
            self._resume = Backfilling(start, state.latest_block)

            raws = []
            for kind in EventKind:
                completed, logs = await self._race(self.ledger.query_events(kind, start, end))
                if not completed:
                    return None
                raws.extend(logs)

            events = sorted(decode_events(raws), key=event_order)
            registrations = [event for event in events if isinstance(event, AssetRegistered)]
            transfers = [event for event in events if isinstance(event, OwnershipTransferred)]

            for event in registrations + transfers:
                if self._stop.is_set():
                    return None
                await self._apply(event)

            await self.cursor.advance(end)
            logger.debug(
                f"Backfilled blocks {start}-{end}: "
                f"{len(registrations)} registrations, {len(transfers)} transfers"
            )

        logger.info(f"Backfill complete up to block {state.latest_block}")
        return Streaming(state.latest_block + 1)

    async def _stream(self, state: Streaming) -> Optional[SyncState]:
        self._resume = state
        logger.info(f"Streaming events from block {state.from_block}")

        stream = self.ledger.subscribe_events(state.from_block)
        try:
            while True:
                completed, raw = await self._race(_next_log(stream))
                if not completed:
                    return None
                if raw is None:
                    logger.warning("Event stream ended")
                    return Recovering(self.retry_delay, self._resume)

                try:
                    event = decode_event(raw)
                except DecodeError as e:
                    logger.warning(f"Skipping undecodable log {raw.get('transactionHash')}: {e}")
                    continue
                if event is None:
                    continue

                await self._apply(event)
                self._resume = Streaming(event.block_number)
                # Later events in the same block may still arrive
                await self.cursor.advance(event.block_number - 1)
        finally:
            await stream.aclose()

    async def _recover(self, state: Recovering) -> Optional[SyncState]:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=state.delay)
            return None
        except asyncio.TimeoutError:
            logger.info(f"Resuming {type(state.resume).__name__}")
            return state.resume

# Export public interface
__all__ = [
    'Starting',
    'Backfilling',
    'Streaming',
    'Recovering',
    'SyncState',
    'SyncCursor',
    'SyncOrchestrator',
    'classify_error',
    'plan_chunks',
    'backfill_window'
]
