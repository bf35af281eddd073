"""
Lighter Exchange Adapter
========================
Implements ExchangeAdapter for Lighter DEX (zkLighter mainnet).

Uses:
- lighter.SignerClient for signed order submission
- lighter.AccountApi / OrderApi for positions, balances and prices
- GET /api/v1/orderBooks for market metadata (ids, decimals)

Contract ids are Lighter market ids as strings. Quantities and prices are
sent as integers scaled by the market's supported decimals.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import aiohttp

from .base import (
    BUY, FOK, IOC, LIMIT, SELL, Balance, ExchangeAdapter, Order, PlaceOrderOptions, Position, Ticker,
)
from .errors import (
    AuthenticationError, ExchangeError, NetworkError, OrderRejectedError, RateLimitError,
    SymbolNotFoundError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://mainnet.zklighter.elliot.ai"


@dataclass
class LighterMarket:
    """Market metadata from the orderBooks endpoint"""
    market_id: int
    symbol: str
    size_decimals: int
    price_decimals: int


def to_units(value: float, decimals: int) -> int:
    """Scale a decimal amount to Lighter's integer representation"""
    return int(round(float(value) * (10 ** decimals)))


class LighterAdapter(ExchangeAdapter):
    """Lighter DEX adapter for the hedge engine"""

    def __init__(
        self,
        private_key: str,
        account_index: int,
        api_key_index: int,
        base_url: Optional[str] = None,
        signer_client=None,
        api_client=None,
        account_api=None,
        order_api=None
    ):
        super().__init__()
        self.base_url = base_url or DEFAULT_BASE_URL
        self.private_key = private_key
        self.account_index = int(account_index)
        self.api_key_index = int(api_key_index)

        # SDK clients; built in initialize() unless supplied
        self.signer_client = signer_client
        self.api_client = api_client
        self.account_api = account_api
        self.order_api = order_api

        self._markets: Optional[Dict[str, LighterMarket]] = None

    @property
    def name(self) -> str:
        return "Lighter"

    def _build_clients(self) -> None:
        clients = (self.signer_client, self.api_client, self.account_api, self.order_api)
        if all(client is not None for client in clients):
            return

        import lighter

        if self.signer_client is None:
            self.signer_client = lighter.SignerClient(
                url=self.base_url,
                private_key=self.private_key,
                account_index=self.account_index,
                api_key_index=self.api_key_index,
            )
        if self.api_client is None:
            self.api_client = lighter.ApiClient(configuration=lighter.Configuration(host=self.base_url))
        if self.account_api is None:
            self.account_api = lighter.AccountApi(self.api_client)
        if self.order_api is None:
            self.order_api = lighter.OrderApi(self.api_client)

    async def initialize(self) -> None:
        """Build SDK clients, verify the API key and load market metadata"""
        self._build_clients()

        err = self.signer_client.check_client()
        if err is not None:
            raise AuthenticationError(f"Lighter API key check failed: {err}")

        await self._load_markets()
        self._connected = True
        logger.info(f"Lighter adapter initialized (account: {self.account_index})")

    async def close(self) -> None:
        """Close SDK sessions"""
        if self.api_client is not None:
            await self.api_client.close()
        if self.signer_client is not None:
            await self.signer_client.close()
        await super().close()

    # ===== Market metadata =====

    async def _fetch_market_metadata(self) -> Dict[str, LighterMarket]:
        url = f"{self.base_url}/api/v1/orderBooks"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(url) as resp:
                    if resp.status == 429:
                        raise RateLimitError("Lighter orderBooks rate limited")
                    if resp.status != 200:
                        raise NetworkError(f"Failed to fetch Lighter markets: HTTP {resp.status}")
                    data = await resp.json()
        except aiohttp.ClientError as e:
            raise NetworkError(f"Error fetching Lighter markets: {e}", cause=e) from e

        markets = {}
        for market in data.get("order_books", []):
            symbol = market.get("symbol")
            if symbol is None or market.get("market_id") is None:
                continue
            markets[symbol] = LighterMarket(
                market_id=int(market["market_id"]),
                symbol=symbol,
                size_decimals=int(market.get("supported_size_decimals", 3)),
                price_decimals=int(market.get("supported_price_decimals", 3)),
            )
        logger.info(f"Fetched metadata for {len(markets)} Lighter markets")
        return markets

    async def _load_markets(self) -> Dict[str, LighterMarket]:
        if self._markets is None:
            self._markets = await self._fetch_market_metadata()
        return self._markets

    async def get_market(self, symbol: str) -> LighterMarket:
        markets = await self._load_markets()
        market = markets.get(symbol)
        if market is None:
            raise SymbolNotFoundError(symbol, self.name)
        return market

    async def _market_by_id(self, market_id: int) -> Optional[LighterMarket]:
        markets = await self._load_markets()
        for market in markets.values():
            if market.market_id == market_id:
                return market
        return None

    async def resolve_contract_id(self, symbol: str) -> str:
        market = await self.get_market(symbol)
        return str(market.market_id)

    # ===== Market data =====

    async def get_ticker(self, symbol: str) -> Ticker:
        """Last trade price from order_book_details"""
        market = await self.get_market(symbol)
        try:
            response = await self.order_api.order_book_details(market_id=market.market_id)
        except Exception as e:
            raise NetworkError(f"Lighter ticker request failed for {symbol}: {e}", cause=e) from e

        details = getattr(response, "order_book_details", None) or []
        if not details:
            raise SymbolNotFoundError(symbol, self.name)

        return Ticker(
            symbol=symbol,
            contract_id=str(market.market_id),
            last_price=str(details[0].last_trade_price),
        )

    # ===== Account =====

    async def _get_account(self):
        try:
            response = await self.account_api.account(by="index", value=str(self.account_index))
        except Exception as e:
            raise NetworkError(f"Lighter account request failed: {e}", cause=e) from e

        if not getattr(response, "accounts", None):
            raise ExchangeError(f"Lighter account {self.account_index} not found", "ACCOUNT_NOT_FOUND")
        return response.accounts[0]

    async def get_positions(self, symbol: Optional[str] = None) -> List[Position]:
        """
        Open positions. Lighter reports size as an absolute value and the
        direction in the 'sign' field (1 = long, -1 = short).
        """
        account = await self._get_account()

        positions = []
        for pos in getattr(account, "positions", None) or []:
            size = abs(float(pos.position))
            if size == 0:
                continue

            market = await self._market_by_id(int(pos.market_id))
            pos_symbol = market.symbol if market else getattr(pos, "symbol", str(pos.market_id))
            if symbol is not None and pos_symbol != symbol:
                continue

            is_long = getattr(pos, "sign", 1) == 1
            positions.append(Position(
                symbol=pos_symbol,
                contract_id=str(pos.market_id),
                size=str(pos.position).lstrip("-"),
                side=BUY if is_long else SELL,
                entry_price=str(pos.avg_entry_price),
                unrealized_pnl=str(getattr(pos, "unrealized_pnl", "0")),
                margin_used=str(getattr(pos, "allocated_margin", "0")),
                liquidation_price=(
                    str(pos.liquidation_price) if getattr(pos, "liquidation_price", None) else None
                ),
            ))
        return positions

    async def get_balances(self) -> List[Balance]:
        account = await self._get_account()
        return [Balance(
            asset="USDC",
            available=str(account.available_balance),
            total=str(getattr(account, "collateral", account.available_balance)),
        )]

    # ===== Trading =====

    def _time_in_force(self, time_in_force: str) -> int:
        if time_in_force == IOC:
            return self.signer_client.ORDER_TIME_IN_FORCE_IMMEDIATE_OR_CANCEL
        if time_in_force == FOK:
            return self.signer_client.ORDER_TIME_IN_FORCE_FILL_OR_KILL
        return self.signer_client.ORDER_TIME_IN_FORCE_GOOD_TILL_TIME

    async def place_order(self, options: PlaceOrderOptions) -> Order:
        """
        Submit an order.

        Market orders go through create_market_order with the price as the
        worst acceptable average execution price. Limit orders go through
        create_order.
        """
        self.validate_place_order_options(options)

        market = await self._market_by_id(int(options.contract_id))
        if market is None:
            raise SymbolNotFoundError(options.symbol, self.name)

        base_amount = to_units(float(options.quantity), market.size_decimals)
        if base_amount <= 0:
            raise OrderRejectedError(
                f"Quantity {options.quantity} below Lighter minimum for {market.symbol}"
            )

        is_ask = options.side == SELL
        client_order_index = int(time.time() * 1000) % 1000000

        if options.price is not None:
            price_units = max(to_units(float(options.price), market.price_decimals), 1)
        else:
            # No bound given: accept any fill
            price_units = 1 if is_ask else 10 ** 12

        logger.info(
            f"Lighter order: {options.side.upper()} {options.quantity} {market.symbol} "
            f"(base_amount={base_amount}, price={price_units}, reduce_only={options.reduce_only})"
        )

        try:
            if options.type == LIMIT:
                result = await self.signer_client.create_order(
                    market_index=market.market_id,
                    client_order_index=client_order_index,
                    base_amount=base_amount,
                    price=price_units,
                    is_ask=is_ask,
                    order_type=self.signer_client.ORDER_TYPE_LIMIT,
                    time_in_force=self._time_in_force(options.time_in_force),
                    reduce_only=options.reduce_only,
                )
            else:
                result = await self.signer_client.create_market_order(
                    market_index=market.market_id,
                    client_order_index=client_order_index,
                    base_amount=base_amount,
                    avg_execution_price=price_units,
                    is_ask=is_ask,
                    reduce_only=options.reduce_only,
                )
        except Exception as e:
            raise NetworkError(f"Lighter order submission failed: {e}", cause=e) from e

        tx_hash = self._unpack_result(result)

        now = self.current_timestamp()
        return Order(
            id=tx_hash,
            client_order_id=str(client_order_index),
            symbol=options.symbol,
            contract_id=options.contract_id,
            side=options.side,
            type=options.type,
            quantity=options.quantity,
            price=options.price,
            status="pending",
            created_at=now,
            updated_at=now,
            reduce_only=options.reduce_only,
            post_only=options.post_only,
        )

    @staticmethod
    def _unpack_result(result) -> str:
        """(tx, tx_hash, error) tuple -> tx hash, raising on error"""
        if not isinstance(result, tuple) or len(result) not in (2, 3):
            raise OrderRejectedError(f"Unexpected Lighter order result: {result!r}")

        if len(result) == 3:
            _, tx_hash, error = result
        else:
            tx_hash, error = result

        if error is not None:
            message = getattr(error, "message", None) or str(error)
            raise OrderRejectedError(f"Lighter rejected order: {message}")

        return str(getattr(tx_hash, "tx_hash", tx_hash))
