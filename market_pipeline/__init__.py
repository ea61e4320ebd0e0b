"""
Market Data Pipeline

Multi-provider sneaker market data normalization and eBay metrics engine.
"""

__version__ = "1.0.0"
