import argparse
import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import Any, Dict

from config import load_config, SettingsError
from database import create_pool, init_db, close as db_close, LedgerStore
from rpc import SwitchAssetsClient
from projector import LedgerProjector
from analytics import AnalyticsPublisher, JsonSnapshotSink, MarkdownSummarySink
from sync import SyncCursor, SyncOrchestrator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

@dataclass
class AppContext:
    """Everything the indexer needs, built once at startup."""
    settings: Dict[str, Any]
    store: LedgerStore
    ledger: SwitchAssetsClient
    projector: LedgerProjector
    publisher: AnalyticsPublisher

def build_context(settings: Dict[str, Any], pool) -> AppContext:
    store = LedgerStore(pool)
    ledger = SwitchAssetsClient(
        settings['rpc_url'],
        settings['ws_url'],
        settings['contract_address'],
        timeout=settings['rpc_timeout'],
        max_block_range=settings['max_block_range']
    )
    publisher = AnalyticsPublisher(store, [
        JsonSnapshotSink(settings['analytics_json_path']),
        MarkdownSummarySink(settings['analytics_summary_path'])
    ])
    return AppContext(
        settings=settings,
        store=store,
        ledger=ledger,
        projector=LedgerProjector(store, ledger),
        publisher=publisher
    )

async def run(settings: Dict[str, Any], reconcile: bool = False) -> None:
    """Main application entry point."""
    logger.info("Initializing database...")
    pool = await create_pool(
        settings['db_url'],
        min_size=settings['pool_min_size'],
        max_size=settings['pool_max_size']
    )

    try:
        await init_db(pool)
        context = build_context(settings, pool)

        try:
            if reconcile:
                logger.info("Reconciling assets with the contract...")
                await context.projector.reconcile_assets()

            await context.publisher.refresh()

            orchestrator = SyncOrchestrator(
                context.ledger,
                context.projector,
                context.publisher,
                SyncCursor(context.store, persist=settings['persist_cursor']),
                history_window=settings['history_window'],
                max_block_range=settings['max_block_range'],
                retry_delay=settings['retry_delay']
            )

            # Set up signal handlers
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, orchestrator.stop)

            logger.info("Indexer running. Press Ctrl+C to exit.")
            await orchestrator.run()

        finally:
            context.ledger.close()

    finally:
        logger.info("Shutting down...")
        await db_close(pool)

def main() -> None:
    parser = argparse.ArgumentParser(description="SwitchAssets ledger indexer")
    parser.add_argument('--config', default='.', help="Directory containing settings.conf")
    parser.add_argument(
        '--reconcile',
        action='store_true',
        help="Upsert every asset reported by the contract before syncing"
    )
    args = parser.parse_args()

    try:
        settings = load_config(args.config)
    except SettingsError as e:
        logger.error(str(e))
        raise SystemExit(1)

    logging.getLogger().setLevel(settings['log_level'])

    try:
        asyncio.run(run(settings, reconcile=args.reconcile))
    except KeyboardInterrupt:
        logger.info("Interrupted")

if __name__ == "__main__":
    main()
