"""
Paradex Exchange Adapter
========================
Implements ExchangeAdapter for Paradex (Starknet perps) through paradex_py.

paradex_py is synchronous; every SDK call runs in a worker thread so two
legs on different venues can be in flight at the same time.
"""

import asyncio
import logging
from decimal import Decimal
from typing import List, Optional, Set

from .base import (
    BUY, IOC, LIMIT, SELL, Balance, ExchangeAdapter, Order, PlaceOrderOptions, Position, Ticker,
)
from .errors import AuthenticationError, NetworkError, OrderRejectedError, SymbolNotFoundError

logger = logging.getLogger(__name__)

PERP_SUFFIX = "-USD-PERP"
ACCEPTED_STATUSES = ("NEW", "OPEN", "FILLED", "CLOSED")


def to_market(symbol: str) -> str:
    """BTC -> BTC-USD-PERP"""
    if symbol.endswith(PERP_SUFFIX):
        return symbol
    return f"{symbol}{PERP_SUFFIX}"


def from_market(market: str) -> str:
    """BTC-USD-PERP -> BTC"""
    return market.replace(PERP_SUFFIX, "")


class ParadexAdapter(ExchangeAdapter):
    """Paradex adapter using a trading-only subkey"""

    def __init__(
        self,
        l2_private_key: str,
        l2_address: str,
        env: str = "prod",
        client=None
    ):
        super().__init__()
        self.l2_private_key = l2_private_key
        self.l2_address = l2_address
        self.env = env
        self.client = client  # ParadexSubkey
        self._markets: Optional[Set[str]] = None

    @property
    def name(self) -> str:
        return "Paradex"

    async def _call(self, func, *args, **kwargs):
        """Run a blocking SDK call off the event loop"""
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except Exception as e:
            raise NetworkError(f"Paradex request failed: {e}", cause=e) from e

    async def initialize(self) -> None:
        """Authenticate the subkey and load the market list"""
        if self.client is None:
            from paradex_py import ParadexSubkey

            try:
                self.client = await asyncio.to_thread(
                    ParadexSubkey,
                    env=self.env,
                    l2_private_key=self.l2_private_key,
                    l2_address=self.l2_address,
                )
            except Exception as e:
                raise AuthenticationError(f"Paradex authentication failed: {e}", cause=e) from e

        await self._load_markets()
        self._connected = True
        logger.info(f"Paradex adapter initialized ({self.env}, {len(self._markets)} markets)")

    async def _load_markets(self) -> Set[str]:
        if self._markets is None:
            response = await self._call(self.client.api_client.fetch_markets)
            self._markets = {m.get("symbol") for m in (response or {}).get("results", [])}
        return self._markets

    async def resolve_contract_id(self, symbol: str) -> str:
        market = to_market(symbol)
        markets = await self._load_markets()
        if market not in markets:
            raise SymbolNotFoundError(symbol, self.name)
        return market

    # ===== Market data =====

    async def get_ticker(self, symbol: str) -> Ticker:
        """Last traded price from the market summary, with the BBO when available"""
        market = await self.resolve_contract_id(symbol)
        summary = await self._call(
            self.client.api_client.fetch_markets_summary, params={"market": market}
        ) or {}
        results = summary.get("results") or []
        if not results or not results[0].get("last_traded_price"):
            raise NetworkError(f"No Paradex price available for {market}")

        bbo = await self._call(self.client.api_client.fetch_bbo, market=market) or {}
        return Ticker(
            symbol=symbol,
            contract_id=market,
            last_price=str(results[0]["last_traded_price"]),
            bid_price=str(bbo["bid"]) if bbo.get("bid") else None,
            ask_price=str(bbo["ask"]) if bbo.get("ask") else None,
        )

    # ===== Account =====

    async def get_positions(self, symbol: Optional[str] = None) -> List[Position]:
        """Open positions. Paradex reports signed size: negative = short."""
        response = await self._call(self.client.api_client.fetch_positions) or {}

        positions = []
        for pos in response.get("results", []):
            size = Decimal(str(pos.get("size") or 0))
            if size == 0:
                continue
            pos_symbol = from_market(pos.get("market", ""))
            if symbol is not None and pos_symbol != symbol:
                continue

            positions.append(Position(
                symbol=pos_symbol,
                contract_id=pos.get("market"),
                size=str(abs(size)),
                side=BUY if size > 0 else SELL,
                entry_price=str(pos.get("average_entry_price", "0")),
                unrealized_pnl=str(pos.get("unrealized_pnl", "0")),
                margin_used=str(pos.get("cost_usd", "0")),
                leverage=str(pos["leverage"]) if pos.get("leverage") else None,
                liquidation_price=str(pos["liquidation_price"]) if pos.get("liquidation_price") else None,
            ))
        return positions

    async def get_balances(self) -> List[Balance]:
        summary = await self._call(self.client.api_client.fetch_account_summary)
        return [Balance(
            asset="USDC",
            available=str(summary.free_collateral),
            total=str(summary.account_value),
        )]

    # ===== Trading =====

    async def place_order(self, options: PlaceOrderOptions) -> Order:
        """
        Submit an order. IOC time-in-force maps to the IOC instruction;
        a price is only sent for limit orders.
        """
        self.validate_place_order_options(options)
        from paradex_py.common.order import Order as ParadexOrder, OrderSide, OrderType

        is_limit = options.type == LIMIT
        if options.post_only:
            instruction = "POST_ONLY"
        elif options.time_in_force == IOC:
            instruction = "IOC"
        else:
            instruction = "GTC"

        order_kwargs = dict(
            market=options.contract_id,
            order_type=OrderType.Limit if is_limit else OrderType.Market,
            order_side=OrderSide.Buy if options.side == BUY else OrderSide.Sell,
            size=Decimal(options.quantity),
            instruction=instruction,
            reduce_only=options.reduce_only,
        )
        if is_limit:
            order_kwargs["limit_price"] = Decimal(options.price)
        if options.client_order_id:
            order_kwargs["client_id"] = options.client_order_id

        logger.info(
            f"Paradex order: {options.side.upper()} {options.quantity} {options.contract_id} "
            f"({instruction}, reduce_only={options.reduce_only})"
        )

        result = await self._call(self.client.api_client.submit_order, ParadexOrder(**order_kwargs)) or {}
        status = result.get("status")
        if status not in ACCEPTED_STATUSES:
            reason = result.get("cancel_reason") or result.get("message") or status
            raise OrderRejectedError(f"Paradex rejected order: {reason}", order_id=result.get("id"))

        now = self.current_timestamp()
        return Order(
            id=str(result.get("id")),
            client_order_id=options.client_order_id,
            symbol=options.symbol,
            contract_id=options.contract_id,
            side=options.side,
            type=options.type,
            quantity=options.quantity,
            price=options.price,
            status="filled" if status in ("FILLED", "CLOSED") else "open",
            avg_fill_price=str(result["avg_fill_price"]) if result.get("avg_fill_price") else None,
            created_at=now,
            updated_at=now,
            reduce_only=options.reduce_only,
            post_only=options.post_only,
        )
