"""
Tests for exchange adapters

SDK clients are replaced with mocks; no network access.
"""

import os
import sys
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hedge_agent.exchanges.base import (
    BUY, IOC, LIMIT, MARKET, SELL, Balance, ExchangeAdapter, PlaceOrderOptions, Position,
    opposite_side,
)
from hedge_agent.exchanges.errors import (
    AuthenticationError, BusinessError, ExchangeError, InvalidOrderError, NetworkError,
    OrderRejectedError, RateLimitError, SymbolNotFoundError,
)
from hedge_agent.exchanges.lighter_adapter import LighterAdapter, LighterMarket, to_units
from hedge_agent.exchanges.paradex_adapter import ParadexAdapter, from_market, to_market


# ============================================================================
# BASE
# ============================================================================

class MinimalExchange(ExchangeAdapter):
    """Only the abstract methods, backed by fixed lists"""

    def __init__(self, positions=None, balances=None):
        super().__init__()
        self._positions = positions or []
        self._balances = balances or []

    @property
    def name(self):
        return "minimal"

    async def initialize(self):
        self._connected = True

    async def place_order(self, options):
        raise NotImplementedError

    async def get_positions(self, symbol=None):
        return [p for p in self._positions if symbol is None or p.symbol == symbol]

    async def get_balances(self):
        return self._balances

    async def get_ticker(self, symbol):
        raise NotImplementedError

    async def resolve_contract_id(self, symbol):
        return symbol


def options(**kwargs):
    defaults = dict(symbol="BTC", contract_id="1", side=BUY, type=MARKET, quantity="0.01")
    defaults.update(kwargs)
    return PlaceOrderOptions(**defaults)


class TestBaseAdapter:

    def test_opposite_side(self):
        assert opposite_side(BUY) == SELL
        assert opposite_side(SELL) == BUY

    def test_get_position_filters(self):
        btc = Position(symbol="BTC", size="1", side=BUY, entry_price="1", unrealized_pnl="0", margin_used="0")
        exchange = MinimalExchange(positions=[btc])
        assert asyncio.run(exchange.get_position("BTC")) is btc
        assert asyncio.run(exchange.get_position("ETH")) is None

    def test_get_balance_filters(self):
        usdc = Balance(asset="USDC", available="10", total="12")
        exchange = MinimalExchange(balances=[usdc])
        assert asyncio.run(exchange.get_balance("USDC")) is usdc
        assert asyncio.run(exchange.get_balance("ETH")) is None

    def test_connection_flag(self):
        exchange = MinimalExchange()
        assert exchange.is_connected() is False
        asyncio.run(exchange.initialize())
        assert exchange.is_connected() is True
        asyncio.run(exchange.close())
        assert exchange.is_connected() is False

    def test_position_is_open(self):
        def position(size):
            return Position(symbol="BTC", size=size, side=BUY, entry_price="1", unrealized_pnl="0", margin_used="0")
        assert position("0.5").is_open
        assert not position("0").is_open
        assert not position("0.000000").is_open
        assert not position("").is_open

    @pytest.mark.parametrize("bad", [
        dict(symbol=""),
        dict(quantity="0"),
        dict(quantity="-1"),
        dict(quantity="abc"),
        dict(type=LIMIT, price=None),
        dict(type=LIMIT, price="0"),
    ])
    def test_validation_rejects(self, bad):
        with pytest.raises(InvalidOrderError):
            MinimalExchange().validate_place_order_options(options(**bad))

    def test_validation_accepts(self):
        MinimalExchange().validate_place_order_options(options())
        MinimalExchange().validate_place_order_options(options(type=LIMIT, price="50000"))


class TestErrors:

    def test_hierarchy(self):
        assert issubclass(OrderRejectedError, BusinessError)
        assert issubclass(InvalidOrderError, BusinessError)
        assert issubclass(SymbolNotFoundError, BusinessError)
        for cls in (NetworkError, AuthenticationError, BusinessError, RateLimitError):
            assert issubclass(cls, ExchangeError)

    def test_fields(self):
        cause = OSError("reset")
        err = NetworkError("timeout", cause=cause)
        assert (err.message, err.code, err.cause) == ("timeout", "NETWORK_ERROR", cause)
        assert RateLimitError("slow down", retry_after=2.5).retry_after == 2.5
        assert OrderRejectedError("no", order_id="42").order_id == "42"
        missing = SymbolNotFoundError("DOGE", "Lighter")
        assert missing.symbol == "DOGE"
        assert "Lighter" in str(missing)


# ============================================================================
# LIGHTER
# ============================================================================

BTC_MARKET = LighterMarket(market_id=1, symbol="BTC", size_decimals=5, price_decimals=1)
ETH_MARKET = LighterMarket(market_id=0, symbol="ETH", size_decimals=4, price_decimals=2)


@pytest.fixture
def lighter():
    signer = Mock()
    signer.check_client.return_value = None
    signer.create_market_order = AsyncMock(return_value=("tx", SimpleNamespace(tx_hash="0xabc"), None))
    signer.create_order = AsyncMock(return_value=("tx", "0xdef", None))
    signer.close = AsyncMock()
    signer.ORDER_TYPE_LIMIT = 0
    signer.ORDER_TIME_IN_FORCE_IMMEDIATE_OR_CANCEL = 0
    signer.ORDER_TIME_IN_FORCE_GOOD_TILL_TIME = 1
    signer.ORDER_TIME_IN_FORCE_FILL_OR_KILL = 2

    api_client = Mock()
    api_client.close = AsyncMock()

    adapter = LighterAdapter(
        private_key="key",
        account_index=7,
        api_key_index=2,
        signer_client=signer,
        api_client=api_client,
        account_api=Mock(account=AsyncMock()),
        order_api=Mock(order_book_details=AsyncMock()),
    )
    adapter._markets = {"BTC": BTC_MARKET, "ETH": ETH_MARKET}
    return adapter


class TestLighterAdapter:

    def test_to_units(self):
        assert to_units(0.01, 5) == 1000
        assert to_units(51000.0, 1) == 510000
        assert to_units(0.0299999, 4) == 300

    def test_initialize(self, lighter):
        asyncio.run(lighter.initialize())
        assert lighter.is_connected()
        lighter.signer_client.check_client.assert_called_once()

    def test_initialize_bad_key(self, lighter):
        lighter.signer_client.check_client.return_value = "invalid api key"
        with pytest.raises(AuthenticationError):
            asyncio.run(lighter.initialize())
        assert not lighter.is_connected()

    def test_resolve_contract_id(self, lighter):
        assert asyncio.run(lighter.resolve_contract_id("BTC")) == "1"
        assert asyncio.run(lighter.resolve_contract_id("ETH")) == "0"
        with pytest.raises(SymbolNotFoundError):
            asyncio.run(lighter.resolve_contract_id("DOGE"))

    def test_get_ticker(self, lighter):
        lighter.order_api.order_book_details.return_value = SimpleNamespace(
            order_book_details=[SimpleNamespace(last_trade_price=50123.4)]
        )
        ticker = asyncio.run(lighter.get_ticker("BTC"))
        assert ticker.last_price == "50123.4"
        assert ticker.contract_id == "1"
        lighter.order_api.order_book_details.assert_awaited_with(market_id=1)

    def test_get_ticker_network_error(self, lighter):
        lighter.order_api.order_book_details.side_effect = OSError("reset")
        with pytest.raises(NetworkError):
            asyncio.run(lighter.get_ticker("BTC"))

    def test_get_positions_uses_sign(self, lighter):
        lighter.account_api.account.return_value = SimpleNamespace(accounts=[SimpleNamespace(
            available_balance="100",
            positions=[
                SimpleNamespace(market_id=1, position="0.01000", sign=-1, avg_entry_price="50000",
                                unrealized_pnl="-1.5", position_value="500"),
                SimpleNamespace(market_id=0, position="0.0000", sign=1, avg_entry_price="0",
                                unrealized_pnl="0", position_value="0"),
            ],
        )])

        positions = asyncio.run(lighter.get_positions())
        assert len(positions) == 1
        btc = positions[0]
        assert btc.symbol == "BTC"
        assert btc.side == SELL
        assert btc.size == "0.01000"
        assert btc.contract_id == "1"
        assert btc.unrealized_pnl == "-1.5"
        lighter.account_api.account.assert_awaited_with(by="index", value="7")

        assert asyncio.run(lighter.get_position("ETH")) is None

    def test_get_balances(self, lighter):
        lighter.account_api.account.return_value = SimpleNamespace(accounts=[SimpleNamespace(
            available_balance="250.5", collateral="300", positions=[],
        )])
        balance = asyncio.run(lighter.get_balance("USDC"))
        assert balance.available == "250.5"
        assert balance.total == "300"

    def test_market_order(self, lighter):
        order = asyncio.run(lighter.place_order(options(
            contract_id="1", side=SELL, quantity="0.010000", price="49009.8", time_in_force=IOC,
        )))

        lighter.signer_client.create_market_order.assert_awaited_once()
        kwargs = lighter.signer_client.create_market_order.call_args.kwargs
        assert kwargs["market_index"] == 1
        assert kwargs["base_amount"] == 1000
        assert kwargs["avg_execution_price"] == 490098
        assert kwargs["is_ask"] is True
        assert kwargs["reduce_only"] is False
        assert order.id == "0xabc"
        assert order.side == SELL
        assert order.status == "pending"

    def test_limit_order(self, lighter):
        order = asyncio.run(lighter.place_order(options(
            contract_id="0", type=LIMIT, quantity="0.5", price="3000.25", reduce_only=True,
        )))
        kwargs = lighter.signer_client.create_order.call_args.kwargs
        assert kwargs["price"] == 300025
        assert kwargs["is_ask"] is False
        assert kwargs["reduce_only"] is True
        assert kwargs["time_in_force"] == 1
        assert order.id == "0xdef"

    def test_rejected_order(self, lighter):
        lighter.signer_client.create_market_order.return_value = (
            None, None, SimpleNamespace(message="excessive slippage")
        )
        with pytest.raises(OrderRejectedError, match="excessive slippage"):
            asyncio.run(lighter.place_order(options(contract_id="1", price="50000")))

    def test_dust_quantity_rejected(self, lighter):
        with pytest.raises(OrderRejectedError):
            asyncio.run(lighter.place_order(options(contract_id="1", quantity="0.000001", price="1")))
        lighter.signer_client.create_market_order.assert_not_awaited()

    def test_unknown_market_id(self, lighter):
        with pytest.raises(SymbolNotFoundError):
            asyncio.run(lighter.place_order(options(contract_id="99", price="1")))

    def test_close(self, lighter):
        asyncio.run(lighter.close())
        lighter.api_client.close.assert_awaited_once()
        lighter.signer_client.close.assert_awaited_once()
        assert not lighter.is_connected()


# ============================================================================
# PARADEX
# ============================================================================

@pytest.fixture
def paradex():
    api = Mock()
    api.fetch_markets.return_value = {"results": [{"symbol": "BTC-USD-PERP"}, {"symbol": "ETH-USD-PERP"}]}
    client = Mock(api_client=api)
    return ParadexAdapter(l2_private_key="0x1", l2_address="0x2", client=client)


class TestParadexAdapter:

    def test_market_names(self):
        assert to_market("BTC") == "BTC-USD-PERP"
        assert to_market("BTC-USD-PERP") == "BTC-USD-PERP"
        assert from_market("ETH-USD-PERP") == "ETH"

    def test_initialize_loads_markets(self, paradex):
        asyncio.run(paradex.initialize())
        assert paradex.is_connected()
        assert asyncio.run(paradex.resolve_contract_id("BTC")) == "BTC-USD-PERP"
        with pytest.raises(SymbolNotFoundError):
            asyncio.run(paradex.resolve_contract_id("DOGE"))

    def test_sdk_errors_become_network_errors(self, paradex):
        paradex.client.api_client.fetch_markets.side_effect = ConnectionError("refused")
        with pytest.raises(NetworkError):
            asyncio.run(paradex.initialize())

    def test_ticker_uses_last_trade_not_mid(self, paradex):
        paradex.client.api_client.fetch_markets_summary.return_value = {
            "results": [{"last_traded_price": "50040"}]
        }
        paradex.client.api_client.fetch_bbo.return_value = {"bid": "49990", "ask": "50010"}

        ticker = asyncio.run(paradex.get_ticker("BTC"))

        assert ticker.last_price == "50040"
        assert (ticker.bid_price, ticker.ask_price) == ("49990", "50010")
        paradex.client.api_client.fetch_markets_summary.assert_called_with(params={"market": "BTC-USD-PERP"})
        paradex.client.api_client.fetch_bbo.assert_called_with(market="BTC-USD-PERP")

    def test_ticker_without_book(self, paradex):
        paradex.client.api_client.fetch_markets_summary.return_value = {
            "results": [{"last_traded_price": "3001.5"}]
        }
        paradex.client.api_client.fetch_bbo.return_value = {}
        ticker = asyncio.run(paradex.get_ticker("ETH"))
        assert ticker.last_price == "3001.5"
        assert ticker.bid_price is None and ticker.ask_price is None

    def test_ticker_without_last_trade(self, paradex):
        paradex.client.api_client.fetch_markets_summary.return_value = {"results": []}
        with pytest.raises(NetworkError):
            asyncio.run(paradex.get_ticker("BTC"))

    def test_positions_signed_size(self, paradex):
        paradex.client.api_client.fetch_positions.return_value = {"results": [
            {"market": "BTC-USD-PERP", "size": "-0.002", "average_entry_price": "50000",
             "unrealized_pnl": "0.4", "liquidation_price": "90000"},
            {"market": "ETH-USD-PERP", "size": "0", "average_entry_price": "0", "unrealized_pnl": "0"},
        ]}
        positions = asyncio.run(paradex.get_positions())
        assert len(positions) == 1
        assert positions[0].symbol == "BTC"
        assert positions[0].side == SELL
        assert positions[0].size == "0.002"
        assert positions[0].liquidation_price == "90000"
        assert asyncio.run(paradex.get_position("ETH")) is None

    def test_balances(self, paradex):
        paradex.client.api_client.fetch_account_summary.return_value = SimpleNamespace(
            free_collateral="80", account_value="100"
        )
        balance = asyncio.run(paradex.get_balance("USDC"))
        assert (balance.available, balance.total) == ("80", "100")

    def test_ioc_order(self, paradex):
        pytest.importorskip("paradex_py")
        paradex.client.api_client.submit_order.return_value = {"id": "ord-1", "status": "NEW"}

        order = asyncio.run(paradex.place_order(options(
            contract_id="BTC-USD-PERP", quantity="0.002000", price="51000.0",
            time_in_force=IOC, reduce_only=True,
        )))

        submitted = paradex.client.api_client.submit_order.call_args.args[0]
        assert submitted.instruction == "IOC"
        assert submitted.reduce_only is True
        assert order.id == "ord-1"
        assert order.status == "open"

    def test_rejected_order(self, paradex):
        pytest.importorskip("paradex_py")
        paradex.client.api_client.submit_order.return_value = {
            "id": "ord-2", "status": "REJECTED", "cancel_reason": "NOT_ENOUGH_MARGIN"
        }
        with pytest.raises(OrderRejectedError) as exc:
            asyncio.run(paradex.place_order(options(contract_id="BTC-USD-PERP", time_in_force=IOC)))
        assert exc.value.order_id == "ord-2"
        assert "NOT_ENOUGH_MARGIN" in str(exc.value)
