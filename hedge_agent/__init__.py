"""
Delta-Neutral Hedge Agent
=========================
Opens mirrored long/short positions of equal size on two perpetual-futures
accounts, holds them for a random time, then flattens both.

Supported Exchanges:
- Lighter (zkLighter)
- Paradex (Starknet)
"""
