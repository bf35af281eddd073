"""Trade history persistence"""
from .trade_history import (
    CreateTradeHistoryInput,
    TradeHistoryFilters,
    TradeHistoryQueryOptions,
    TradeHistoryRecord,
    TradeHistoryRepository,
    UpdateTradeHistoryInput,
    create_trade_history_repository,
)

__all__ = [
    'CreateTradeHistoryInput',
    'UpdateTradeHistoryInput',
    'TradeHistoryRecord',
    'TradeHistoryFilters',
    'TradeHistoryQueryOptions',
    'TradeHistoryRepository',
    'create_trade_history_repository',
]
