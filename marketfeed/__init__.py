"""
marketfeed - cached, rate-limited market data client with live token streaming.
"""

__version__ = "0.1.0"
