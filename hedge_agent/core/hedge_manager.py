"""
Hedge Manager
=============
Runs delta-neutral hedge cycles across two perpetual venues.

Each cycle:
1. Flatten any leftover exposure on the chosen symbol
2. Open opposite legs of equal size on both venues at the same time
3. Hold for a random duration
4. Flatten both legs and verify against the venues

Sizes, hold times and pauses are drawn at random from HedgeConfig ranges so
the activity pattern is not predictable.
"""

import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

from hedge_agent.exchanges.base import (
    BUY, IOC, MARKET, SELL, ExchangeAdapter, Order, PlaceOrderOptions, Position, opposite_side,
)
from hedge_agent.storage.trade_history import (
    STATUS_CLOSE, CreateTradeHistoryInput, TradeHistoryRepository, UpdateTradeHistoryInput,
)
from .config import HedgeConfig
from .helpers import random_between, random_integer_between

logger = logging.getLogger(__name__)

CLOSE_MAX_ATTEMPTS = 5
CLOSE_RETRY_DELAY_S = 1.0
ITERATION_FLOOR_S = 1.0


async def gather_legs(*aws) -> List[Any]:
    """Await every leg, then re-raise the first failure. No leg is left in flight."""
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


class HedgeManagerAlreadyRunning(RuntimeError):
    """run() called while a loop is already active"""


class HedgeManager:
    """
    Opens and closes mirrored positions on two exchanges.

    The first exchange takes the first side drawn for the cycle, the second
    exchange takes the opposite one. Both legs trade the same quantity,
    derived from the first exchange's price.
    """

    def __init__(
        self,
        first_exchange: ExchangeAdapter,
        second_exchange: ExchangeAdapter,
        service_id: str = "hedge",
        trade_history: Optional[TradeHistoryRepository] = None,
        config: Optional[Union[HedgeConfig, Mapping[str, Any]]] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.first_exchange = first_exchange
        self.second_exchange = second_exchange
        self.service_id = service_id
        self.trade_history = trade_history

        if isinstance(config, HedgeConfig):
            self.config = config
        else:
            self.config = HedgeConfig.from_overrides(config)

        self._rng = rng or random.Random()
        self._sleep = sleep

        # State
        self.running = False

        # Stats
        self.session_start = datetime.now(timezone.utc)
        self.cycles_started = 0
        self.cycles_completed = 0
        self.failed_closes = 0
        self.total_volume_usd = 0.0

    @property
    def exchanges(self) -> Tuple[ExchangeAdapter, ExchangeAdapter]:
        return self.first_exchange, self.second_exchange

    async def initialize(self) -> None:
        """Connect both exchanges that are not connected yet"""
        for exchange in self.exchanges:
            if exchange.is_connected():
                continue
            logger.info(f"Initializing {exchange.name}...")
            await exchange.initialize()

    # ===== Pricing =====

    def calculate_quantity_from_usd(self, symbol: str, size_usd: float, last_price: float) -> str:
        """Base quantity for a USD notional, rounded to 6 decimals"""
        if last_price <= 0:
            raise ValueError(f"Invalid price for {symbol}: {last_price}")
        return f"{size_usd / last_price:.6f}"

    def calculate_price_with_slippage(self, price: float, slippage: float, side: str) -> float:
        """Marketable limit bound: above the price for buys, below for sells"""
        if side == BUY:
            return price * (1 + slippage)
        return price * (1 - slippage)

    # ===== Orders =====

    async def place_market_order(
        self,
        symbol: str,
        size_usd: float,
        first_side: str,
        second_side: str
    ) -> Tuple[Order, Order]:
        """
        Open both legs concurrently.

        No compensation is attempted if only one leg fills; the next
        close_positions() sweep sees the leftover and flattens it.

        Returns:
            (first_leg_order, second_leg_order)
        """
        if size_usd <= 0:
            raise ValueError(f"Invalid size for {symbol}: {size_usd}")

        first_contract_id, second_contract_id = await gather_legs(
            self.first_exchange.resolve_contract_id(symbol),
            self.second_exchange.resolve_contract_id(symbol),
        )
        first_ticker, second_ticker = await gather_legs(
            self.first_exchange.get_ticker(symbol),
            self.second_exchange.get_ticker(symbol),
        )

        first_price = float(first_ticker.last_price)
        second_price = float(second_ticker.last_price)
        quantity = self.calculate_quantity_from_usd(symbol, size_usd, first_price)

        first_limit = self.calculate_price_with_slippage(first_price, self.config.slippage, first_side)
        second_limit = self.calculate_price_with_slippage(second_price, self.config.slippage, second_side)

        logger.info(
            f"Placing orders: {symbol} qty={quantity} | "
            f"{self.first_exchange.name} {first_side.upper()} @ {first_limit} | "
            f"{self.second_exchange.name} {second_side.upper()} @ {second_limit}"
        )

        first_order, second_order = await gather_legs(
            self.first_exchange.place_order(PlaceOrderOptions(
                symbol=symbol,
                contract_id=first_contract_id,
                side=first_side,
                type=MARKET,
                quantity=quantity,
                price=str(first_limit),
                time_in_force=IOC,
            )),
            self.second_exchange.place_order(PlaceOrderOptions(
                symbol=symbol,
                contract_id=second_contract_id,
                side=second_side,
                type=MARKET,
                quantity=quantity,
                price=str(second_limit),
                time_in_force=IOC,
            )),
        )
        return first_order, second_order

    async def close_position(self, exchange: ExchangeAdapter, position: Position) -> Order:
        """Reduce-only IOC order for the full size of a position"""
        side = opposite_side(position.side)
        contract_id = position.contract_id or await exchange.resolve_contract_id(position.symbol)
        ticker = await exchange.get_ticker(position.symbol)
        price = self.calculate_price_with_slippage(float(ticker.last_price), self.config.slippage, side)

        logger.info(f"Closing {exchange.name} {position.symbol}: {side.upper()} {position.size} @ {price}")

        return await exchange.place_order(PlaceOrderOptions(
            symbol=position.symbol,
            contract_id=contract_id,
            side=side,
            type=MARKET,
            quantity=position.size,
            price=str(price),
            reduce_only=True,
            time_in_force=IOC,
        ))

    async def _get_positions(self, symbol: str) -> List[Optional[Position]]:
        return await gather_legs(
            self.first_exchange.get_position(symbol),
            self.second_exchange.get_position(symbol),
        )

    @staticmethod
    def _is_open(position: Optional[Position]) -> bool:
        return position is not None and position.is_open

    async def _close_positions(self, symbol: str) -> Tuple[bool, Dict[int, Order]]:
        """close_positions() plus the last close order placed on each leg (0 = first, 1 = second)"""
        close_orders: Dict[int, Order] = {}

        for attempt in range(1, CLOSE_MAX_ATTEMPTS + 1):
            try:
                positions = await self._get_positions(symbol)
                open_legs = [
                    (index, exchange, position)
                    for index, (exchange, position) in enumerate(zip(self.exchanges, positions))
                    if self._is_open(position)
                ]
                if not open_legs:
                    return True, close_orders

                if len(open_legs) == 1:
                    _, exchange, position = open_legs[0]
                    logger.warning(
                        f"Leg mismatch on {symbol}: only {exchange.name} holds "
                        f"{position.side.upper()} {position.size}"
                    )

                results = await asyncio.gather(*(
                    self.close_position(exchange, position) for _, exchange, position in open_legs
                ), return_exceptions=True)
                errors = []
                for (index, _, _), result in zip(open_legs, results):
                    if isinstance(result, BaseException):
                        errors.append(result)
                    else:
                        close_orders[index] = result
                if errors:
                    raise errors[0]
            except Exception as e:
                logger.error(f"Close attempt {attempt}/{CLOSE_MAX_ATTEMPTS} for {symbol} failed: {e}")

            await self._sleep(CLOSE_RETRY_DELAY_S)

        positions = await self._get_positions(symbol)
        return not any(self._is_open(p) for p in positions), close_orders

    async def close_positions(self, symbol: str) -> bool:
        """
        Flatten both legs of a symbol.

        Up to 5 attempts, 1s apart. Position state is always re-read from the
        venues; a final query after the last attempt decides the result.

        Returns:
            True if both venues report no position
        """
        success, _ = await self._close_positions(symbol)
        return success

    # ===== Trade history =====

    def _record_open(
        self,
        symbol: str,
        first_side: str,
        first_order: Order,
        second_order: Order
    ) -> Optional[int]:
        if not self.trade_history:
            return None

        if first_side == BUY:
            long_account, long_order, short_order = 1, first_order, second_order
        else:
            long_account, long_order, short_order = 2, second_order, first_order

        try:
            record = self.trade_history.create(CreateTradeHistoryInput(
                service_id=self.service_id,
                symbol=symbol,
                size=first_order.quantity,
                open_timestamp=int(time.time()),
                long_account=long_account,
                long_open_tx=long_order.id,
                short_open_tx=short_order.id,
                long_entry_price=long_order.avg_fill_price or long_order.price,
                short_entry_price=short_order.avg_fill_price or short_order.price,
            ))
            return record.id
        except Exception as e:
            logger.error(f"Failed to record open trade for {symbol}: {e}")
            return None

    def _record_close(
        self,
        record_id: int,
        first_side: str,
        pnl: List[Optional[str]],
        close_orders: Dict[int, Order]
    ) -> None:
        long_index, short_index = (0, 1) if first_side == BUY else (1, 0)
        long_close = close_orders.get(long_index)
        short_close = close_orders.get(short_index)

        try:
            long_pnl = pnl[long_index]
            short_pnl = pnl[short_index]
            spread = None
            if long_pnl is not None and short_pnl is not None:
                spread = str(float(long_pnl) - float(short_pnl))

            self.trade_history.update(record_id, UpdateTradeHistoryInput(
                status=STATUS_CLOSE,
                close_timestamp=int(time.time()),
                long_close_tx=long_close.id if long_close else None,
                short_close_tx=short_close.id if short_close else None,
                long_exit_price=(long_close.avg_fill_price or long_close.price) if long_close else None,
                short_exit_price=(short_close.avg_fill_price or short_close.price) if short_close else None,
                long_pnl=long_pnl,
                short_pnl=short_pnl,
                spread=spread,
            ))
        except Exception as e:
            logger.error(f"Failed to record close for trade {record_id}: {e}")

    async def _snapshot_pnl(self, symbol: str) -> List[Optional[str]]:
        """Unrealized PnL per leg just before closing"""
        try:
            positions = await self._get_positions(symbol)
        except Exception as e:
            logger.warning(f"Could not read PnL for {symbol}: {e}")
            return [None, None]
        return [p.unrealized_pnl if self._is_open(p) else None for p in positions]

    # ===== Main loop =====

    async def run_cycle(self, symbols: List[str]) -> None:
        """One open -> hold -> close round on a randomly chosen symbol"""
        if not self.running:
            return

        symbol = symbols[random_integer_between(0, len(symbols) - 1, self._rng)]
        size_usd = random_between(self.config.min_size_usd, self.config.max_size_usd, self._rng)

        if not await self.close_positions(symbol):
            logger.error(f"Could not flatten {symbol} before opening, skipping cycle")
            return

        if random_integer_between(0, 1, self._rng) == 0:
            first_side, second_side = BUY, SELL
        else:
            first_side, second_side = SELL, BUY

        self.cycles_started += 1
        logger.info("")
        logger.info("=" * 60)
        logger.info(
            f"CYCLE #{self.cycles_started} - {symbol} ${size_usd:.2f} | "
            f"{self.first_exchange.name} {first_side.upper()} / "
            f"{self.second_exchange.name} {second_side.upper()}"
        )
        logger.info("=" * 60)

        first_order, second_order = await self.place_market_order(symbol, size_usd, first_side, second_side)
        self.total_volume_usd += 2 * size_usd
        record_id = self._record_open(symbol, first_side, first_order, second_order)

        hold_ms = random_between(self.config.min_hold_time_ms, self.config.max_hold_time_ms, self._rng)
        logger.info(f"Holding {symbol} for {hold_ms / 1000:.1f}s")
        await self._sleep(hold_ms / 1000)

        if not self.running:
            return

        pnl = await self._snapshot_pnl(symbol) if record_id is not None else [None, None]

        closed, close_orders = await self._close_positions(symbol)
        if not closed:
            self.failed_closes += 1
            logger.error(f"Failed to close {symbol} after hold, retrying next iteration")
            await self._sleep(CLOSE_RETRY_DELAY_S)
            return

        if record_id is not None:
            self._record_close(record_id, first_side, pnl, close_orders)

        self.cycles_completed += 1
        logger.info(f"Cycle complete: {symbol} (completed {self.cycles_completed}/{self.cycles_started})")

        pause_ms = random_between(
            self.config.min_sleep_between_orders_ms,
            self.config.max_sleep_between_orders_ms,
            self._rng,
        )
        logger.info(f"Next cycle in {pause_ms / 1000:.1f}s...")
        await self._sleep(pause_ms / 1000)

    async def run(self, symbols: List[str]) -> None:
        """
        Main run loop. Runs until stop() is called.

        Raises:
            HedgeManagerAlreadyRunning: a loop is already active
            ValueError: no symbols given
        """
        if self.running:
            raise HedgeManagerAlreadyRunning("HedgeManager is already running")
        if not symbols:
            raise ValueError("At least one symbol is required")

        self.running = True
        self.session_start = datetime.now(timezone.utc)
        logger.info(
            f"Starting hedge loop on {self.first_exchange.name}/{self.second_exchange.name} "
            f"for {', '.join(symbols)}"
        )

        try:
            while self.running:
                try:
                    await self.run_cycle(symbols)
                except Exception as e:
                    logger.error(f"Cycle error: {e}")

                await self._sleep(ITERATION_FLOOR_S)
        finally:
            self.running = False
            for symbol in symbols:
                try:
                    if not await self.close_positions(symbol):
                        logger.error(f"Positions still open on {symbol} after shutdown")
                except Exception as e:
                    logger.error(f"Final close for {symbol} failed: {e}")
            self._log_summary()

    async def stop(self, symbol: str) -> bool:
        """Ask the loop to exit at its next check and flatten one symbol now"""
        logger.info(f"Stopping hedge loop, closing {symbol}...")
        self.running = False
        return await self.close_positions(symbol)

    # ===== Stats =====

    def get_session_stats(self) -> Dict:
        """Get statistics for the current session"""
        elapsed = (datetime.now(timezone.utc) - self.session_start).total_seconds() / 3600
        return {
            "session_duration_hours": elapsed,
            "cycles_started": self.cycles_started,
            "cycles_completed": self.cycles_completed,
            "failed_closes": self.failed_closes,
            "total_volume_usd": self.total_volume_usd,
            "volume_per_hour": self.total_volume_usd / elapsed if elapsed > 0 else 0,
        }

    def _log_summary(self) -> None:
        stats = self.get_session_stats()
        logger.info("")
        logger.info("=" * 60)
        logger.info("SESSION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"  Duration: {stats['session_duration_hours']:.2f} hours")
        logger.info(f"  Cycles: {stats['cycles_completed']}/{stats['cycles_started']} completed")
        logger.info(f"  Failed closes: {stats['failed_closes']}")
        logger.info(f"  Total Volume: ${stats['total_volume_usd']:,.2f}")
        logger.info("=" * 60)
