"""
Trade History Repository
========================
SQLite-backed persistence for hedge cycles. One row per cycle: created when
both legs are opened, closed when both legs are flattened.

Monetary values are strings in the API and TEXT in the table; every value is
parsed through ``Decimal`` on the way in so malformed numbers are rejected.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

STATUS_OPEN = "open"
STATUS_CLOSE = "close"
TRADE_STATUSES = (STATUS_OPEN, STATUS_CLOSE)

ORDER_FIELDS = ("open_timestamp", "close_timestamp", "created_at", "updated_at")

_CREATE_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS trade_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        service_id TEXT NOT NULL,
        symbol TEXT NOT NULL,
        size TEXT NOT NULL,
        status TEXT NOT NULL,
        open_timestamp INTEGER NOT NULL,
        long_account INTEGER NOT NULL,
        long_open_tx TEXT,
        short_open_tx TEXT,
        long_entry_price TEXT,
        short_entry_price TEXT,
        close_timestamp INTEGER,
        long_close_tx TEXT,
        short_close_tx TEXT,
        long_exit_price TEXT,
        short_exit_price TEXT,
        long_pnl TEXT,
        short_pnl TEXT,
        spread TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_trade_history_symbol ON trade_history(symbol);",
    "CREATE INDEX IF NOT EXISTS idx_trade_history_status ON trade_history(status);",
    "CREATE INDEX IF NOT EXISTS idx_trade_history_open_ts ON trade_history(open_timestamp);",
    "CREATE INDEX IF NOT EXISTS idx_trade_history_service ON trade_history(service_id);",
)

_DECIMAL_COLUMNS = {
    "size",
    "long_entry_price",
    "short_entry_price",
    "long_exit_price",
    "short_exit_price",
    "long_pnl",
    "short_pnl",
    "spread",
}


@dataclass
class CreateTradeHistoryInput:
    """Fields written when a hedge cycle opens"""
    symbol: str
    size: str
    open_timestamp: int
    long_account: int
    service_id: str = "hedge"
    status: str = STATUS_OPEN
    long_open_tx: Optional[str] = None
    short_open_tx: Optional[str] = None
    long_entry_price: Optional[str] = None
    short_entry_price: Optional[str] = None


@dataclass
class UpdateTradeHistoryInput:
    """Fields written when a hedge cycle closes. None means "leave as is"."""
    close_timestamp: Optional[int] = None
    long_close_tx: Optional[str] = None
    short_close_tx: Optional[str] = None
    long_exit_price: Optional[str] = None
    short_exit_price: Optional[str] = None
    long_pnl: Optional[str] = None
    short_pnl: Optional[str] = None
    spread: Optional[str] = None
    status: Optional[str] = None


@dataclass
class TradeHistoryRecord:
    id: int
    service_id: str
    symbol: str
    size: str
    status: str
    open_timestamp: int
    long_account: int
    long_open_tx: Optional[str]
    short_open_tx: Optional[str]
    long_entry_price: Optional[str]
    short_entry_price: Optional[str]
    close_timestamp: Optional[int]
    long_close_tx: Optional[str]
    short_close_tx: Optional[str]
    long_exit_price: Optional[str]
    short_exit_price: Optional[str]
    long_pnl: Optional[str]
    short_pnl: Optional[str]
    spread: Optional[str]
    created_at: datetime
    updated_at: datetime


@dataclass
class TradeHistoryFilters:
    symbol: Optional[str] = None
    status: Optional[str] = None
    service_id: Optional[str] = None
    open_timestamp_gte: Optional[int] = None
    open_timestamp_lte: Optional[int] = None


@dataclass
class TradeHistoryQueryOptions:
    limit: Optional[int] = None
    offset: Optional[int] = None
    order_by: str = "open_timestamp"
    order_direction: str = "desc"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_decimal_string(value: Optional[Union[str, int, float, Decimal]]) -> Optional[str]:
    """Validate a decimal value and return its canonical string form"""
    if value is None:
        return None
    try:
        return str(Decimal(str(value)))
    except InvalidOperation:
        raise ValueError(f"Invalid decimal value: {value!r}")


class TradeHistoryRepository:
    """Thread-safe SQLite repository for hedge trade history"""

    def __init__(self, db_path: Union[Path, str]):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        with self._conn:
            for ddl in _CREATE_TABLES:
                self._conn.execute(ddl)

    # ------------------------------------------------------------------
    def _to_domain(self, row: sqlite3.Row) -> TradeHistoryRecord:
        data = dict(row)
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        data["updated_at"] = datetime.fromisoformat(data["updated_at"])
        return TradeHistoryRecord(**data)

    @staticmethod
    def _where(filters: Optional[TradeHistoryFilters]):
        clauses: List[str] = []
        params: Dict[str, Any] = {}
        if filters:
            if filters.symbol:
                clauses.append("symbol = :symbol")
                params["symbol"] = filters.symbol
            if filters.status:
                clauses.append("status = :status")
                params["status"] = filters.status
            if filters.service_id:
                clauses.append("service_id = :service_id")
                params["service_id"] = filters.service_id
            if filters.open_timestamp_gte is not None:
                clauses.append("open_timestamp >= :open_gte")
                params["open_gte"] = filters.open_timestamp_gte
            if filters.open_timestamp_lte is not None:
                clauses.append("open_timestamp <= :open_lte")
                params["open_lte"] = filters.open_timestamp_lte
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    # ------------------------------------------------------------------
    def create(self, data: CreateTradeHistoryInput) -> TradeHistoryRecord:
        """Insert a new trade history record"""
        if data.status not in TRADE_STATUSES:
            raise ValueError(f"Invalid trade status: {data.status}")

        now = _utcnow()
        payload = {
            "service_id": data.service_id,
            "symbol": data.symbol,
            "size": _to_decimal_string(data.size),
            "status": data.status,
            "open_timestamp": int(data.open_timestamp),
            "long_account": int(data.long_account),
            "long_open_tx": data.long_open_tx,
            "short_open_tx": data.short_open_tx,
            "long_entry_price": _to_decimal_string(data.long_entry_price),
            "short_entry_price": _to_decimal_string(data.short_entry_price),
            "created_at": now,
            "updated_at": now,
        }
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO trade_history (
                    service_id, symbol, size, status, open_timestamp, long_account,
                    long_open_tx, short_open_tx, long_entry_price, short_entry_price,
                    created_at, updated_at
                ) VALUES (
                    :service_id, :symbol, :size, :status, :open_timestamp, :long_account,
                    :long_open_tx, :short_open_tx, :long_entry_price, :short_entry_price,
                    :created_at, :updated_at
                )
                """,
                payload,
            )
            record_id = cursor.lastrowid

        return self._get(record_id)

    def find_by_id(self, record_id: int) -> Optional[TradeHistoryRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM trade_history WHERE id = ?", (record_id,)
            ).fetchone()
        return self._to_domain(row) if row else None

    def _get(self, record_id: int) -> TradeHistoryRecord:
        record = self.find_by_id(record_id)
        if record is None:
            raise KeyError(f"Trade history record {record_id} not found")
        return record

    def find_many(
        self,
        filters: Optional[TradeHistoryFilters] = None,
        options: Optional[TradeHistoryQueryOptions] = None
    ) -> List[TradeHistoryRecord]:
        """Records matching filters, newest open first by default"""
        options = options or TradeHistoryQueryOptions()
        if options.order_by not in ORDER_FIELDS:
            raise ValueError(f"Cannot order by {options.order_by}")
        direction = "ASC" if options.order_direction.lower() == "asc" else "DESC"

        where, params = self._where(filters)
        sql = f"SELECT * FROM trade_history {where} ORDER BY {options.order_by} {direction}, id {direction}"
        if options.limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = int(options.limit)
            if options.offset:
                sql += " OFFSET :offset"
                params["offset"] = int(options.offset)
        elif options.offset:
            sql += " LIMIT -1 OFFSET :offset"
            params["offset"] = int(options.offset)

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._to_domain(row) for row in rows]

    def find_open_trades(self, symbol: Optional[str] = None) -> List[TradeHistoryRecord]:
        return self.find_many(
            TradeHistoryFilters(symbol=symbol, status=STATUS_OPEN),
            TradeHistoryQueryOptions(order_by="open_timestamp", order_direction="desc"),
        )

    def find_closed_trades(
        self,
        symbol: Optional[str] = None,
        options: Optional[TradeHistoryQueryOptions] = None
    ) -> List[TradeHistoryRecord]:
        return self.find_many(
            TradeHistoryFilters(symbol=symbol, status=STATUS_CLOSE),
            options or TradeHistoryQueryOptions(order_by="close_timestamp", order_direction="desc"),
        )

    def update(self, record_id: int, data: UpdateTradeHistoryInput) -> TradeHistoryRecord:
        """
        Update the given fields of a record.

        Raises:
            KeyError: no record with this id
        """
        if data.status is not None and data.status not in TRADE_STATUSES:
            raise ValueError(f"Invalid trade status: {data.status}")

        updates: Dict[str, Any] = {}
        for f in fields(data):
            value = getattr(data, f.name)
            if value is None:
                continue
            if f.name in _DECIMAL_COLUMNS:
                value = _to_decimal_string(value)
            updates[f.name] = value
        updates["updated_at"] = _utcnow()

        assignments = ", ".join(f"{column} = :{column}" for column in updates)
        updates["id"] = record_id
        with self._lock, self._conn:
            cursor = self._conn.execute(
                f"UPDATE trade_history SET {assignments} WHERE id = :id", updates
            )
            if cursor.rowcount == 0:
                raise KeyError(f"Trade history record {record_id} not found")

        return self._get(record_id)

    def close_trade(self, record_id: int, data: UpdateTradeHistoryInput) -> TradeHistoryRecord:
        """Write close fields and mark the record closed"""
        data.status = STATUS_CLOSE
        return self.update(record_id, data)

    def count(self, filters: Optional[TradeHistoryFilters] = None) -> int:
        where, params = self._where(filters)
        with self._lock:
            row = self._conn.execute(
                f"SELECT COUNT(*) FROM trade_history {where}", params
            ).fetchone()
        return int(row[0])

    def delete(self, record_id: int) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM trade_history WHERE id = ?", (record_id,))

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def create_trade_history_repository(
    db_config=None
) -> Optional[TradeHistoryRepository]:
    """
    Build a repository when DB_ENABLED=true, otherwise return None so the
    engine runs without persistence.

    Args:
        db_config: DatabaseConfig, read from the environment when omitted
    """
    from hedge_agent.core.config import DatabaseConfig

    db_config = db_config or DatabaseConfig.from_env()
    if db_config.enabled:
        logger.info("DB persistence enabled - using TradeHistoryRepository")
        return TradeHistoryRepository(db_config.path)

    logger.info("DB persistence disabled - no trade history will be saved")
    return None
