"""
TokenService - cached, rate-limited access to market data.

Every outbound call goes through the RequestDispatcher; every result is
written to the CacheStore tier matching its freshness requirements:

- symbols:     durable, 30 min
- token data:  memory, 10 min
- history:     durable, 5 min (key rounded to the minute)
- logos:       durable, 24 h
"""

import asyncio
from datetime import timedelta
from typing import Any, Awaitable, Callable

from loguru import logger

from marketfeed.constants import (
    HISTORICAL_DATA_TTL,
    LOGO_TTL,
    MAX_BARS,
    MAX_SEARCH_RESULTS,
    STORE_HISTORICAL,
    STORE_LOGOS,
    STORE_SYMBOLS,
    SYMBOLS_TTL,
    TOKEN_DATA_TTL,
)
from marketfeed.datasource.charli3 import Charli3Source, SearchResult
from marketfeed.services.cache import CacheStore
from marketfeed.services.dispatcher import RequestDispatcher
from marketfeed.utils import (
    calculate_bars,
    get_valid_resolutions,
    historical_cache_key,
    parse_currency,
)

MIN_QUERY_LENGTH = 2


class TokenService:
    """
    Facade over the API source, cache and dispatcher.

    Usage:
        service = TokenService(cache, dispatcher, source)

        symbols = await service.get_symbols("Aggregate")
        results = service.search_tokens("snek", symbols, "Aggregate")
        await service.enrich_with_tvl(results)
    """

    def __init__(
        self,
        cache: CacheStore,
        dispatcher: RequestDispatcher,
        source: Charli3Source,
        debug: bool = False,
    ):
        self.cache = cache
        self.dispatcher = dispatcher
        self.source = source
        self._debug = debug

    async def get_or_fetch(
        self,
        store: str | None,
        key: str,
        ttl: timedelta,
        fetch_fn: Callable[[], Awaitable[Any]],
        memory: bool = False,
    ) -> Any:
        """
        Return a fresh cached value or fetch, cache and return a new one.

        Args:
            store: Durable store name (ignored when memory=True)
            key: Cache key
            ttl: Lifetime of a freshly fetched value
            fetch_fn: Zero-argument coroutine function doing the call
            memory: Use the memory tier instead of a durable store

        Raises:
            Whatever fetch_fn raises; failures are never cached
        """
        if memory:
            cached = self.cache.get_memory(key)
            if cached is not None:
                self._log(f"Memory hit for {key[:50]} - no API call")
                return cached
        elif not await self.cache.is_expired(store, key):
            cached = await self.cache.get(store, key)
            if cached is not None:
                self._log(f"Using cached {store}/{key[:50]} - no API call")
                return cached

        self._log(f"Fetching fresh data for {store or 'memory'}/{key[:50]}")
        data = await self.dispatcher.add(fetch_fn)

        if memory:
            self.cache.set_memory(key, data, ttl)
        else:
            await self.cache.set_with_expiry(store, key, data, ttl)
        return data

    async def get_symbols(self, group: str) -> dict[str, Any]:
        data = await self.get_or_fetch(
            STORE_SYMBOLS,
            group,
            SYMBOLS_TTL,
            lambda: self.source.get_symbol_info(group),
        )
        logger.info(f"Symbols for {group}: {len(data.get('symbol', []))} entries")
        return data

    async def get_current_token(self, policy_id: str, asset_name: str) -> dict[str, Any]:
        return await self.get_or_fetch(
            None,
            f"{policy_id}{asset_name}",
            TOKEN_DATA_TTL,
            lambda: self.source.get_current_token(policy_id, asset_name),
            memory=True,
        )

    async def get_historical(
        self, symbol: str, resolution: str, from_ts: int, to_ts: int
    ) -> dict[str, Any]:
        """
        OHLCV series for a symbol, cached per minute-rounded range.

        Raises:
            ValueError: If the range needs more than MAX_BARS bars
        """
        if calculate_bars(from_ts, to_ts, resolution) > MAX_BARS:
            suggestion = get_valid_resolutions(from_ts, to_ts)["suggestions"].get(resolution)
            raise ValueError(f"Too many bars for {resolution}. {suggestion}")

        key = historical_cache_key(symbol, resolution, from_ts, to_ts)
        return await self.get_or_fetch(
            STORE_HISTORICAL,
            key,
            HISTORICAL_DATA_TTL,
            lambda: self.source.get_history(symbol, resolution, from_ts, to_ts),
        )

    async def get_logo(self, policy_id: str, asset_name: str) -> bytes:
        return await self.get_or_fetch(
            STORE_LOGOS,
            f"{policy_id}{asset_name}",
            LOGO_TTL,
            lambda: self.source.get_token_logo(policy_id, asset_name),
        )

    async def get_groups(self) -> list[str]:
        return await self.dispatcher.add(self.source.get_groups)

    def search_tokens(
        self, query: str, symbols: dict[str, Any] | None, dex: str
    ) -> list[SearchResult]:
        """
        Rank symbol-info entries against a query.

        Score: exact pair 100, pair prefix 90, pair contains 80, base or
        quote contains 70, ticker contains 60. Best MAX_SEARCH_RESULTS are
        returned, highest score first.
        """
        if len(query) < MIN_QUERY_LENGTH:
            self._log("Query too short, returning empty results")
            return []

        if not symbols or not isinstance(symbols.get("symbol"), list):
            logger.warning("Search skipped: invalid symbols data structure")
            return []

        needle = query.lower()
        pairs = symbols["symbol"]
        tickers = symbols.get("ticker") or []
        currencies = symbols.get("currency") or []
        base_currencies = symbols.get("base-currency") or []

        scored: list[tuple[int, SearchResult]] = []
        for i, pair in enumerate(pairs):
            ticker = tickers[i] if i < len(tickers) else None
            currency = currencies[i] if i < len(currencies) else None
            if not pair or not ticker or not currency:
                continue

            score = self._match_score(needle, pair, ticker)
            if not score:
                continue

            policy_id, asset_name = parse_currency(currency)
            if not policy_id:
                continue

            scored.append(
                (
                    score,
                    SearchResult(
                        dex=dex,
                        ticker=ticker,
                        pair=pair,
                        policy_id=policy_id,
                        asset_name=asset_name,
                        base_currency=(
                            base_currencies[i] if i < len(base_currencies) else ""
                        )
                        or "",
                        currency=currency,
                    ),
                )
            )

        # Stable sort keeps listing order among equal scores
        scored.sort(key=lambda item: item[0], reverse=True)
        self._log(f"Search '{query}': {len(scored)} matches")
        return [result for _, result in scored[:MAX_SEARCH_RESULTS]]

    @staticmethod
    def _match_score(needle: str, pair: str, ticker: str) -> int:
        pair_lower = pair.lower()
        if pair_lower == needle:
            return 100
        if pair_lower.startswith(needle):
            return 90
        if needle in pair_lower:
            return 80

        base, _, quote = pair.partition(".")
        if needle in base.lower() or needle in quote.lower():
            return 70
        if needle in ticker.lower():
            return 60
        return 0

    async def enrich_with_tvl(
        self, results: list[SearchResult], max_results: int = 20
    ) -> None:
        """Fill in tvl for the first max_results results, concurrently."""
        targets = results[:max_results]
        logger.info(
            f"Enriching {len(targets)} search results with TVL data "
            f"(up to {len(targets)} API calls)"
        )
        await asyncio.gather(*(self._fill_tvl(result) for result in targets))

    async def _fill_tvl(self, result: SearchResult) -> None:
        try:
            data = await self.get_current_token(result.policy_id, result.asset_name)
        except Exception as e:
            logger.warning(f"TVL lookup failed for {result.ticker}: {e}")
            result.tvl = 0
            return
        result.tvl = data.get("current_tvl") or 0

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[TokenService] {message}")
