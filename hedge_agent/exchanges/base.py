"""
Abstract Exchange Adapter Interface
====================================
Defines the contract that every perpetual-futures venue adapter must
implement for the hedge engine, plus the venue-agnostic order, position,
ticker and balance types.

All quantities and prices are carried as decimal strings to avoid precision
loss; floats only appear inside sizing arithmetic.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from .errors import InvalidOrderError

# Order sides
BUY = "buy"
SELL = "sell"

# Order types
MARKET = "market"
LIMIT = "limit"

# Time in force
GTT = "GTT"
IOC = "IOC"
FOK = "FOK"

ORDER_STATUSES = (
    "pending",           # Submitted but not yet confirmed
    "open",              # Active on the exchange
    "partially_filled",
    "filled",
    "cancelled",
    "rejected",
    "expired",
)


def opposite_side(side: str) -> str:
    """buy -> sell, sell -> buy"""
    return SELL if side == BUY else BUY


@dataclass
class Order:
    """Venue-agnostic order"""
    id: str
    symbol: str
    side: str
    type: str
    quantity: str
    status: str
    created_at: int
    updated_at: int
    client_order_id: Optional[str] = None
    contract_id: Optional[str] = None
    price: Optional[str] = None
    filled_quantity: Optional[str] = None
    avg_fill_price: Optional[str] = None
    reduce_only: bool = False
    post_only: bool = False


@dataclass
class Position:
    """Open position on one venue. Size is always a non-negative magnitude."""
    symbol: str
    size: str
    side: str  # "buy" = long, "sell" = short
    entry_price: str
    unrealized_pnl: str
    margin_used: str
    contract_id: Optional[str] = None
    mark_price: Optional[str] = None
    leverage: Optional[str] = None
    liquidation_price: Optional[str] = None

    @property
    def is_open(self) -> bool:
        try:
            return float(self.size) > 0
        except (TypeError, ValueError):
            return False


@dataclass
class Ticker:
    """Market data snapshot"""
    symbol: str
    last_price: str
    contract_id: Optional[str] = None
    bid_price: Optional[str] = None
    ask_price: Optional[str] = None


@dataclass
class Balance:
    """Collateral balance for one asset"""
    asset: str
    available: str
    total: str
    locked: Optional[str] = None


@dataclass
class PlaceOrderOptions:
    """Options for placing an order"""
    symbol: str
    contract_id: str
    side: str
    type: str
    quantity: str
    price: Optional[str] = None
    client_order_id: Optional[str] = None
    reduce_only: bool = False
    post_only: bool = False
    time_in_force: str = GTT


class ExchangeAdapter(ABC):
    """
    Abstract base class for exchange adapters.

    Implementations translate the uniform order/position model into
    venue-specific SDK calls. They raise the errors defined in
    ``hedge_agent.exchanges.errors``:

    - AuthenticationError / NetworkError from initialize()
    - NetworkError, RateLimitError, BusinessError from the trading and
      query methods
    """

    def __init__(self):
        self._connected = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Exchange name for logging/display"""

    @abstractmethod
    async def initialize(self) -> None:
        """
        Connect and authenticate.

        Raises:
            AuthenticationError: credentials rejected
            NetworkError: venue unreachable
        """

    @abstractmethod
    async def place_order(self, options: PlaceOrderOptions) -> Order:
        """Submit an order and return the venue's view of it"""

    @abstractmethod
    async def get_positions(self, symbol: Optional[str] = None) -> List[Position]:
        """Open positions, optionally filtered by symbol"""

    @abstractmethod
    async def get_balances(self) -> List[Balance]:
        """Account balances"""

    @abstractmethod
    async def get_ticker(self, symbol: str) -> Ticker:
        """
        Latest market data for a symbol.

        Raises:
            SymbolNotFoundError: symbol not listed
        """

    @abstractmethod
    async def resolve_contract_id(self, symbol: str) -> str:
        """
        Map a normalized symbol (e.g. "BTC") to the venue's contract id.

        Raises:
            SymbolNotFoundError: symbol not listed
        """

    # ===== Default implementations =====

    async def get_position(self, symbol: str) -> Optional[Position]:
        """Position for one symbol, or None if flat"""
        positions = await self.get_positions(symbol)
        for position in positions:
            if position.symbol == symbol:
                return position
        return None

    async def get_balance(self, asset: str) -> Optional[Balance]:
        """Balance for one asset, or None if not held"""
        balances = await self.get_balances()
        for balance in balances:
            if balance.asset == asset:
                return balance
        return None

    def is_connected(self) -> bool:
        return self._connected

    async def close(self) -> None:
        """Clean up resources"""
        self._connected = False

    def validate_place_order_options(self, options: PlaceOrderOptions) -> None:
        """Reject obviously malformed orders before they reach the venue"""
        if not options.symbol:
            raise InvalidOrderError("Symbol is required")
        try:
            quantity = float(options.quantity)
        except (TypeError, ValueError):
            raise InvalidOrderError(f"Invalid quantity: {options.quantity!r}")
        if quantity <= 0:
            raise InvalidOrderError("Quantity must be greater than 0")
        if options.type == LIMIT:
            try:
                price = float(options.price) if options.price is not None else 0.0
            except (TypeError, ValueError):
                price = 0.0
            if price <= 0:
                raise InvalidOrderError(
                    "Price is required for limit orders and must be greater than 0"
                )

    @staticmethod
    def current_timestamp() -> int:
        """Current Unix timestamp in seconds"""
        return int(time.time())
