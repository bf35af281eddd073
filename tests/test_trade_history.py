"""
Tests for the SQLite trade history repository
"""

import os
import sys
import time
from decimal import Decimal

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hedge_agent.core.config import DatabaseConfig
from hedge_agent.storage.trade_history import (
    CreateTradeHistoryInput,
    TradeHistoryFilters,
    TradeHistoryQueryOptions,
    TradeHistoryRepository,
    UpdateTradeHistoryInput,
    create_trade_history_repository,
)


@pytest.fixture
def repository(tmp_path):
    """Repository on a temporary database file"""
    repo = TradeHistoryRepository(tmp_path / "db" / "hedge.db")
    yield repo
    repo.close()


def open_input(symbol="BTC", open_timestamp=None, service_id="lighter-hedge", **kwargs):
    return CreateTradeHistoryInput(
        symbol=symbol,
        size=kwargs.pop("size", "0.010000"),
        open_timestamp=open_timestamp or int(time.time()),
        long_account=kwargs.pop("long_account", 1),
        service_id=service_id,
        long_open_tx=kwargs.pop("long_open_tx", "tx-long"),
        short_open_tx=kwargs.pop("short_open_tx", "tx-short"),
        long_entry_price=kwargs.pop("long_entry_price", "51000.0"),
        short_entry_price=kwargs.pop("short_entry_price", "49009.8"),
        **kwargs
    )


class TestCreate:
    """Opening records"""

    def test_create_returns_stored_record(self, repository):
        record = repository.create(open_input())

        assert record.id == 1
        assert record.status == "open"
        assert record.symbol == "BTC"
        assert record.service_id == "lighter-hedge"
        assert Decimal(record.size) == Decimal("0.01")
        assert record.long_entry_price == "51000.0"
        assert record.close_timestamp is None
        assert record.spread is None
        assert record.created_at == record.updated_at

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "trades.db"
        repo = TradeHistoryRepository(path)
        try:
            assert path.parent.exists()
        finally:
            repo.close()

    def test_rejects_invalid_decimal(self, repository):
        with pytest.raises(ValueError):
            repository.create(open_input(size="abc"))
        assert repository.count() == 0

    def test_rejects_invalid_status(self, repository):
        with pytest.raises(ValueError):
            repository.create(open_input(status="pending"))


class TestUpdate:
    """Closing records"""

    def test_close_trade(self, repository):
        record = repository.create(open_input())

        closed = repository.close_trade(record.id, UpdateTradeHistoryInput(
            close_timestamp=record.open_timestamp + 30,
            long_close_tx="tx-long-close",
            short_close_tx="tx-short-close",
            long_exit_price="50500",
            short_exit_price="50490",
            long_pnl="1.25",
            short_pnl="-0.75",
            spread="2.0",
        ))

        assert closed.status == "close"
        assert closed.close_timestamp == record.open_timestamp + 30
        assert closed.long_close_tx == "tx-long-close"
        assert Decimal(closed.spread) == Decimal("2")
        # untouched fields survive
        assert closed.long_open_tx == "tx-long"
        assert closed.updated_at >= record.updated_at

    def test_update_only_given_fields(self, repository):
        record = repository.create(open_input())
        updated = repository.update(record.id, UpdateTradeHistoryInput(long_pnl="3"))

        assert updated.status == "open"
        assert updated.long_pnl == "3"
        assert updated.short_pnl is None

    def test_update_missing_record(self, repository):
        with pytest.raises(KeyError):
            repository.update(999, UpdateTradeHistoryInput(long_pnl="1"))

    def test_vanished_record_raises_key_error(self, repository, monkeypatch):
        record = repository.create(open_input())
        monkeypatch.setattr(repository, "find_by_id", lambda record_id: None)

        with pytest.raises(KeyError):
            repository.update(record.id, UpdateTradeHistoryInput(long_pnl="1"))
        with pytest.raises(KeyError):
            repository.create(open_input())

    def test_update_rejects_invalid_decimal(self, repository):
        record = repository.create(open_input())
        with pytest.raises(ValueError):
            repository.update(record.id, UpdateTradeHistoryInput(spread="not-a-number"))


class TestQueries:
    """find_many and friends"""

    @pytest.fixture
    def populated(self, repository):
        base = 1_700_000_000
        first = repository.create(open_input("BTC", base, "lighter-hedge"))
        repository.create(open_input("ETH", base + 10, "lighter-hedge"))
        third = repository.create(open_input("BTC", base + 20, "paradex-hedge"))
        repository.close_trade(first.id, UpdateTradeHistoryInput(close_timestamp=base + 5, spread="1"))
        repository.close_trade(third.id, UpdateTradeHistoryInput(close_timestamp=base + 25, spread="2"))
        return repository, base

    def test_find_by_id(self, populated):
        repository, _ = populated
        assert repository.find_by_id(2).symbol == "ETH"
        assert repository.find_by_id(42) is None

    def test_default_order_newest_first(self, populated):
        repository, _ = populated
        assert [r.id for r in repository.find_many()] == [3, 2, 1]

    def test_filters(self, populated):
        repository, base = populated
        assert [r.id for r in repository.find_many(TradeHistoryFilters(symbol="BTC"))] == [3, 1]
        assert [r.id for r in repository.find_many(TradeHistoryFilters(service_id="paradex-hedge"))] == [3]
        assert [r.id for r in repository.find_many(TradeHistoryFilters(
            open_timestamp_gte=base + 5, open_timestamp_lte=base + 15
        ))] == [2]

    def test_pagination(self, populated):
        repository, _ = populated
        options = TradeHistoryQueryOptions(limit=1, offset=1, order_direction="asc")
        assert [r.id for r in repository.find_many(options=options)] == [2]

    def test_invalid_order_field(self, populated):
        repository, _ = populated
        with pytest.raises(ValueError):
            repository.find_many(options=TradeHistoryQueryOptions(order_by="symbol; DROP TABLE"))

    def test_open_and_closed(self, populated):
        repository, _ = populated
        assert [r.id for r in repository.find_open_trades()] == [2]
        assert [r.id for r in repository.find_closed_trades()] == [3, 1]
        assert [r.id for r in repository.find_closed_trades(symbol="BTC")] == [3, 1]
        assert repository.find_open_trades(symbol="BTC") == []

    def test_count_and_delete(self, populated):
        repository, _ = populated
        assert repository.count() == 3
        assert repository.count(TradeHistoryFilters(status="close")) == 2

        repository.delete(1)
        assert repository.count() == 2
        assert repository.find_by_id(1) is None


class TestFactory:
    """create_trade_history_repository"""

    def test_disabled_returns_none(self):
        assert create_trade_history_repository(DatabaseConfig(enabled=False)) is None

    def test_enabled_builds_repository(self, tmp_path):
        config = DatabaseConfig(enabled=True, database_url=f"sqlite:///{tmp_path / 'hedge.db'}")
        repo = create_trade_history_repository(config)
        try:
            assert isinstance(repo, TradeHistoryRepository)
            assert repo.db_path == tmp_path / "hedge.db"
        finally:
            repo.close()
