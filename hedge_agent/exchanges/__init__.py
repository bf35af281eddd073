"""Exchange adapters for the hedge engine"""
from .base import ExchangeAdapter, Order, Position, Ticker, Balance, PlaceOrderOptions
from .lighter_adapter import LighterAdapter
from .paradex_adapter import ParadexAdapter

__all__ = [
    'ExchangeAdapter',
    'Order',
    'Position',
    'Ticker',
    'Balance',
    'PlaceOrderOptions',
    'LighterAdapter',
    'ParadexAdapter',
]
