"""
Charli3 API data source.
"""

from marketfeed.datasource.charli3 import (
    STREAM_PATH,
    Charli3Source,
    SearchResult,
    TradeUpdate,
)

__all__ = ["STREAM_PATH", "Charli3Source", "SearchResult", "TradeUpdate"]
