"""
Charli3 market data API endpoints.

REST endpoints return JSON documents; the token stream endpoint returns a
chunked body of newline-delimited JSON records, each either a health check
({"s": "ok"}) or a trading update for a pool.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel

from marketfeed.utils import hex_to_ascii

if TYPE_CHECKING:
    from marketfeed.services.client import ApiClient

STREAM_PATH = "/api/v1/tokens/stream"


class TradeUpdate(BaseModel):
    """Trading event pushed by the token stream."""

    pool_id: str
    block_time: int | None = None
    current_price: float | None = None
    previous_price: float | None = None
    current_tvl: float | None = None
    previous_tvl: float | None = None
    volume: float | None = None

    @property
    def price_change(self) -> float | None:
        """Fractional price change since the previous trade."""
        if self.current_price is None or not self.previous_price:
            return None
        return (self.current_price - self.previous_price) / self.previous_price

    @property
    def tvl_change(self) -> float | None:
        if self.current_tvl is None or not self.previous_tvl:
            return None
        return (self.current_tvl - self.previous_tvl) / self.previous_tvl


class SearchResult(BaseModel):
    """Token matched by a symbol search."""

    dex: str
    ticker: str
    pair: str
    policy_id: str
    asset_name: str
    base_currency: str = ""
    currency: str
    tvl: float | None = None

    @property
    def display_name(self) -> str:
        """Readable asset name, falling back to the raw hex."""
        return hex_to_ascii(self.asset_name) or self.asset_name


class Charli3Source:
    """
    REST endpoints of the Charli3 API.

    All methods raise the ApiClient's exceptions; caching and admission
    control are applied by TokenService on top.
    """

    def __init__(self, client: ApiClient):
        self.client = client

    def is_configured(self) -> bool:
        return self.client.config.is_configured()

    async def get_groups(self) -> list[str]:
        """List DEX groups (e.g. 'Aggregate')."""
        data = await self.client.get_json("/api/v1/groups")
        groups = data.get("d", {}).get("groups", [])
        return [group["id"] for group in groups if "id" in group]

    async def get_symbol_info(self, group: str) -> dict[str, Any]:
        """Columnar symbol listing for a group."""
        data = await self.client.get_json("/api/v1/symbol_info", {"group": group})
        logger.info(f"Fetched {len(data.get('symbol', []))} symbols for {group}")
        return data

    async def get_history(
        self,
        symbol: str,
        resolution: str,
        from_ts: int,
        to_ts: int,
    ) -> dict[str, Any]:
        """OHLCV series ({t, o, h, l, c, v}) for a symbol."""
        return await self.client.get_json(
            "/api/v1/history",
            {
                "symbol": symbol,
                "resolution": resolution,
                "from": from_ts,
                "to": to_ts,
                "include_tvl": "true",
            },
        )

    async def get_current_token(
        self, policy_id: str, asset_name: str
    ) -> dict[str, Any]:
        """Current price/TVL snapshot for a token."""
        return await self.client.get_json(
            "/api/v1/tokens/current", {"policy": f"{policy_id}{asset_name}"}
        )

    async def get_token_logo(self, policy_id: str, asset_name: str) -> bytes:
        return await self.client.get_blob(f"/api/v1/tokens/logo/{policy_id}{asset_name}")
