"""
Exchange Error Types
====================
Distinguishes network, authentication, business-rule and rate-limit failures
raised by exchange adapters.
"""

from typing import Optional


class ExchangeError(Exception):
    """Base error for exchange operations"""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.cause = cause


class NetworkError(ExchangeError):
    """Timeouts, dropped connections, bad gateway responses"""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message, "NETWORK_ERROR", cause)


class AuthenticationError(ExchangeError):
    """Invalid API keys, missing permissions, failed signer checks"""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message, "AUTH_ERROR", cause)


class BusinessError(ExchangeError):
    """Request understood but refused (insufficient margin, bad size, etc.)"""


class RateLimitError(ExchangeError):
    """Too many requests"""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message, "RATE_LIMIT_ERROR", cause)
        self.retry_after = retry_after


class OrderRejectedError(BusinessError):
    """Order refused by the venue"""

    def __init__(
        self,
        message: str,
        order_id: Optional[str] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message, "ORDER_REJECTED", cause)
        self.order_id = order_id


class InvalidOrderError(BusinessError):
    """Order options failed local validation"""

    def __init__(self, message: str):
        super().__init__(message, "INVALID_ORDER")


class SymbolNotFoundError(BusinessError):
    """Symbol is not listed on the venue"""

    def __init__(self, symbol: str, exchange: str = ""):
        where = f" on {exchange}" if exchange else ""
        super().__init__(f"Unknown symbol {symbol}{where}", "SYMBOL_NOT_FOUND")
        self.symbol = symbol
