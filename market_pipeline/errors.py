"""
Pipeline exceptions.

Only write-path failures are raised to callers; malformed input and policy
filtering are handled in place by the mappers.
"""


class MarketDataError(Exception):
    """Base class for market data pipeline errors"""


class PersistenceError(MarketDataError):
    """A fact, volume or metric write did not complete"""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")
