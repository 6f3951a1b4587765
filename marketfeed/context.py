"""
Application wiring.

AppContext builds and owns every long-lived collaborator so that nothing
below main.py relies on module-level singletons.
"""

import time
from typing import Callable

import httpx
from loguru import logger

from marketfeed.datasource.charli3 import Charli3Source
from marketfeed.datastore import Database, SettingsRepository
from marketfeed.services.cache import CacheStore
from marketfeed.services.client import ApiClient
from marketfeed.services.dispatcher import RequestDispatcher
from marketfeed.services.scheduler import RefreshScheduler, UpdateCallback
from marketfeed.services.stream import StreamPolicy, StreamSessionManager
from marketfeed.services.token_service import TokenService
from marketfeed.settings import (
    API_URL_SETTING,
    BEARER_TOKEN_SETTING,
    ApiConfig,
    Settings,
)


class AppContext:
    """
    Usage:
        context = await AppContext.create(Settings.from_env())
        symbols = await context.tokens.get_symbols("Aggregate")
        await context.stream.start(pool_id)
        ...
        await context.close()
    """

    def __init__(
        self,
        settings: Settings,
        database: Database,
        config: ApiConfig,
        client: ApiClient,
        cache: CacheStore,
        dispatcher: RequestDispatcher,
        tokens: TokenService,
        stream: StreamSessionManager,
        scheduler: RefreshScheduler,
    ):
        self.settings = settings
        self.database = database
        self.config = config
        self.client = client
        self.cache = cache
        self.dispatcher = dispatcher
        self.tokens = tokens
        self.stream = stream
        self.scheduler = scheduler

    @classmethod
    async def create(
        cls,
        settings: Settings,
        api_url: str | None = None,
        bearer_token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        on_update: UpdateCallback | None = None,
        stream_policy: StreamPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> "AppContext":
        """Open the database, load persisted settings and build services."""
        database = Database(settings.database_url, echo=settings.database_echo)
        await database.init()

        async with database.session() as session:
            persisted = await SettingsRepository(session).get_all()

        config = ApiConfig(
            settings, persisted=persisted, api_url=api_url, bearer_token=bearer_token
        )
        client = ApiClient(
            config,
            timeout=settings.request_timeout,
            http_client=http_client,
            debug=settings.debug,
        )
        cache = CacheStore(database, clock=clock, debug=settings.debug)
        dispatcher = RequestDispatcher(
            max_concurrent=settings.max_concurrent_requests, debug=settings.debug
        )
        tokens = TokenService(
            cache, dispatcher, Charli3Source(client), debug=settings.debug
        )
        stream = StreamSessionManager(client, policy=stream_policy, debug=settings.debug)
        scheduler = RefreshScheduler(
            cache,
            on_update=on_update,
            sweep_minutes=settings.cache_sweep_minutes,
            clock=clock,
        )

        info = config.get_config_info()
        logger.info(
            f"AppContext ready: api_url from {info['api_url_source']}, "
            f"token from {info['bearer_token_source']}"
        )
        if not config.is_configured():
            logger.warning("API not configured: set CHARLI3_BEARER_TOKEN or save credentials")

        return cls(
            settings=settings,
            database=database,
            config=config,
            client=client,
            cache=cache,
            dispatcher=dispatcher,
            tokens=tokens,
            stream=stream,
            scheduler=scheduler,
        )

    async def save_credentials(
        self, api_url: str | None = None, bearer_token: str | None = None
    ) -> None:
        """Persist credentials as local settings (empty value removes one)."""
        async with self.database.session() as session:
            repo = SettingsRepository(session)
            for name, value in (
                (API_URL_SETTING, api_url),
                (BEARER_TOKEN_SETTING, bearer_token),
            ):
                if value is None:
                    continue
                if value:
                    await repo.set(name, value)
                else:
                    await repo.delete(name)

        async with self.database.session() as session:
            persisted = await SettingsRepository(session).get_all()
        self.config.update_persisted(persisted)
        logger.info("API credentials saved")

    async def reset_api_config(self, clear_cache: bool = False) -> None:
        """Re-resolve credentials and lift addon blocks (after a plan change)."""
        self.config.reset_cache()
        self.stream.reset_addon_block()
        if clear_cache:
            await self.cache.clear_all()
        logger.info("API configuration reset")

    async def close(self) -> None:
        if self.scheduler.is_running():
            self.scheduler.stop()
        await self.stream.close()
        await self.dispatcher.cancel_all()
        await self.client.close()
        await self.database.close()
        logger.info("AppContext closed")
