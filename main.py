"""
marketfeed entry point.
Warms the symbol cache, follows a token stream and keeps a chart window
fresh until interrupted.
"""

import asyncio

from loguru import logger

from marketfeed.context import AppContext
from marketfeed.datasource import TradeUpdate
from marketfeed.services import StreamListener, StreamState
from marketfeed.settings import Settings


class LoggingListener(StreamListener):
    """Writes stream events to the log."""

    def on_status(self, key: str, state: StreamState, message: str | None = None) -> None:
        suffix = f": {message}" if message else ""
        logger.info(f"Stream [{key[:16]}] {state.value}{suffix}")

    def on_trade(self, update: TradeUpdate) -> None:
        change = update.price_change
        change_text = f" ({change:+.2%})" if change is not None else ""
        logger.info(
            f"Trade {update.pool_id[:16]}: price={update.current_price}{change_text} "
            f"tvl={update.current_tvl} ({update.tvl_change or 0:+.2%}) volume={update.volume}"
        )

    def on_health(self, key: str) -> None:
        logger.debug(f"Stream [{key[:16]}] health check")


async def main() -> None:
    """Main function"""
    logger.info("Starting marketfeed...")
    settings = Settings.from_env()
    context: AppContext | None = None

    async def refresh_chart(start: int, end: int, resolution: str) -> None:
        history = await context.tokens.get_historical(
            settings.chart_symbol, resolution, start, end
        )
        logger.info(
            f"Chart {settings.chart_symbol} {resolution}: {len(history.get('t', []))} bars"
        )

    try:
        logger.info("Initializing services...")
        context = await AppContext.create(settings, on_update=refresh_chart)

        removed = await context.cache.clear_expired()
        logger.info(f"Removed {removed} expired cache entries")

        context.scheduler.start()

        if context.config.is_configured():
            symbols = await context.tokens.get_symbols(settings.default_dex)
            logger.info(
                f"{len(symbols.get('symbol', []))} symbols available on {settings.default_dex}"
            )

            if settings.chart_symbol:
                context.scheduler.enable_auto_sync(settings.chart_resolution)
                await context.scheduler.sync_now()

            if settings.stream_key:
                context.stream.subscribe(LoggingListener())
                await context.stream.start(settings.stream_key)

        logger.info("marketfeed is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(60)

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Error in main loop: {e}")
    finally:
        if context is not None:
            logger.info("Closing services...")
            await context.close()

        logger.info("marketfeed stopped")


if __name__ == "__main__":
    asyncio.run(main())
