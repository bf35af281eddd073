#!/usr/bin/env python3
"""
Hedge spread analysis.
Reads recorded hedge cycles and reports the average spread (long PnL minus
short PnL) as a percentage of traded volume.

Usage:
    DB_ENABLED=true DATABASE_URL=sqlite:///data/hedge.db python scripts/analyze_hedge_spread.py
    python scripts/analyze_hedge_spread.py --service-id paradex-hedge --symbol BTC
"""

import os
import sys
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from hedge_agent.storage.trade_history import (
    TradeHistoryFilters, TradeHistoryQueryOptions, create_trade_history_repository,
)


def summarize_spread(trades) -> dict:
    """
    Total spread over total volume. Volume counts both legs at entry price.
    Records missing a field count it as 0.
    """
    total_spread = 0.0
    total_volume = 0.0
    for trade in trades:
        size = float(trade.size or 0)
        total_spread += float(trade.spread or 0)
        total_volume += size * float(trade.long_entry_price or 0)
        total_volume += size * float(trade.short_entry_price or 0)

    return {
        "trades": len(trades),
        "total_spread": total_spread,
        "total_volume": total_volume,
        "avg_spread_pct": (total_spread / total_volume * 100) if total_volume > 0 else 0.0,
    }


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Average hedge spread over traded volume")
    parser.add_argument("--service-id", help="Only trades from this service")
    parser.add_argument("--symbol", help="Only trades on this symbol")
    parser.add_argument("--closed-only", action="store_true", help="Skip trades still open")
    args = parser.parse_args(argv)

    load_dotenv()
    repository = create_trade_history_repository()
    if repository is None:
        print("Trade history repository not found (set DB_ENABLED=true and DATABASE_URL)")
        return 1

    try:
        trades = repository.find_many(
            TradeHistoryFilters(
                symbol=args.symbol,
                service_id=args.service_id,
                status="close" if args.closed_only else None,
            ),
            TradeHistoryQueryOptions(order_direction="asc"),
        )
    finally:
        repository.close()

    summary = summarize_spread(trades)
    print(f"Trades: {summary['trades']}")
    print(f"Total volume: ${summary['total_volume']:,.2f}")
    print(f"Total spread: ${summary['total_spread']:,.6f}")
    print(f"Avg spread: {summary['avg_spread_pct']:.10f}%")
    return 0


if __name__ == "__main__":
    sys.exit(main())
