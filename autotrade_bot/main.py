import asyncio
import logging
import platform
import signal
import sys

import aiohttp
import httpx
from solana.rpc.async_api import AsyncClient

from autotrade_bot.config import Settings, UserRegistry, get_settings
from autotrade_bot.core.balance import RpcBalanceProvider, StaticBalanceProvider
from autotrade_bot.core.execution_router import ExecutionRouter
from autotrade_bot.core.position_store import PositionStore
from autotrade_bot.core.price_feed import CompositeFeed, DexScreenerFeed, JupiterTokenFeed, TokenCache
from autotrade_bot.core.strategy_engine import StrategyEngine
from autotrade_bot.core.telegram_notifier import TelegramNotifier
from autotrade_bot.core.trade_sources import JupiterSource, PaperSource
from autotrade_bot.exceptions import ConfigurationException
from autotrade_bot.utils.logging import setup_logging

logger = logging.getLogger(__name__)

shutdown_event = asyncio.Event()


def signal_handler(sig, frame):
    """Handle shutdown signals gracefully."""
    print(f"\n🛑 [SHUTDOWN] Received signal {sig}...")
    shutdown_event.set()


def build_sources(settings: Settings, session: aiohttp.ClientSession, rpc: AsyncClient):
    if settings.PAPER_TRADING_MODE:
        return [
            PaperSource.from_settings(settings, name="paper-a"),
            PaperSource(name="paper-b", latency=settings.SIM_LATENCY_SEC * 1.5, failure_rate=settings.SIM_FAILURE_RATE),
        ]
    return [
        JupiterSource("jupiter-v6", settings.JUPITER_QUOTE_API_BASE, session, rpc, settings.SLIPPAGE_BPS),
        JupiterSource("jupiter-lite", settings.JUPITER_LITE_API_BASE, session, rpc, settings.SLIPPAGE_BPS),
    ]


async def main(settings: Settings = None):
    settings = settings or get_settings()
    setup_logging(settings)

    registry = UserRegistry(settings.USERS_FILE)
    users = registry.load()
    problems = registry.validate(users)
    if problems:
        raise ConfigurationException("Invalid user configuration", problems="; ".join(problems))

    loop = asyncio.get_running_loop()

    # Add signal handlers (not supported on Windows - use fallback)
    if platform.system() != "Windows":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, shutdown_event.set)
    else:
        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=settings.API_TIMEOUT_SEC))
    http_client = httpx.AsyncClient(timeout=settings.API_TIMEOUT_SEC)
    rpc = AsyncClient(settings.RPC_URL)

    feed = CompositeFeed([DexScreenerFeed(settings, http_client), JupiterTokenFeed(settings, session)])
    router = ExecutionRouter(build_sources(settings, session, rpc))
    notifier = TelegramNotifier.from_settings(settings)
    if settings.PAPER_TRADING_MODE:
        balances = StaticBalanceProvider(default=settings.PAPER_INITIAL_BALANCE)
    else:
        balances = RpcBalanceProvider(rpc)
    store = PositionStore.from_settings(settings)

    engine = StrategyEngine(
        settings=settings,
        token_cache=TokenCache(feed, ttl=settings.TOKEN_CACHE_TTL_SEC),
        router=router,
        price_feed=feed,
        notifier=notifier,
        balance_provider=balances,
        users=users,
        store=store,
    )

    mode = "PAPER" if settings.PAPER_TRADING_MODE else "LIVE"
    logger.info(f"Starting auto-trade engine in {mode} mode with {len(engine.eligible_users())} active user(s)")

    try:
        await engine.resume_positions(store.load())
        engine_task = asyncio.create_task(engine.run())

        # Wait for shutdown signal
        await shutdown_event.wait()

        logger.info("Initiating graceful shutdown...")
        await engine.stop()
        try:
            await asyncio.wait_for(engine_task, timeout=3.0)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass
    finally:
        await router.close()
        await notifier.close()
        await feed.close()
        if not session.closed:
            await session.close()
        await rpc.close()
        logger.info("Shutdown complete")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("👋 Bot stopped by user.")
    except ConfigurationException as e:
        print(f"🔥 Configuration error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
