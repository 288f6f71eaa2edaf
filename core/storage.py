"""
Storage service for scan results, notification state and alert outbox.

Supports:
- Hour-bucketed upserts of scan results (at most one row per product/shop/hour)
- Notification state persistence for restart recovery
- Channel-agnostic alert rows picked up by a separate delivery service
"""

import json
import os
import sqlite3
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from .interfaces import NotificationStateRepository, ProductResultRepository
from .models import NotificationState, ProductResult, utc_now
from .utils import get_hour_bucket, to_utc


class SQLiteStorage:
    """SQLite 連線與資料表管理"""

    def __init__(self, db_path: str = "data/monitor.db"):
        self.db_path = db_path
        self._ensure_db_exists()

    def connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=30.0)

    def _ensure_db_exists(self):
        """確保資料庫檔案和資料表存在"""
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        conn = self.connect()
        conn.execute("PRAGMA journal_mode=WAL")
        cursor = conn.cursor()

        # 掃描結果表（每小時每個商品/商店最多一筆）
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS product_results (
                product_id TEXT,
                shop_id TEXT,
                hour_bucket TEXT,
                product_url TEXT,
                price REAL,
                is_available INTEGER,
                timestamp TEXT,
                PRIMARY KEY (product_id, shop_id, hour_bucket)
            )
        """)

        # 通知狀態表
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS notification_states (
                key TEXT PRIMARY KEY,
                product_id TEXT,
                shop_id TEXT,
                last_notified TEXT,
                last_price REAL,
                was_available INTEGER
            )
        """)

        # 通知發送佇列
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                recipient TEXT,
                product_id TEXT,
                shop_id TEXT,
                payload TEXT,
                created_at TEXT
            )
        """)

        # 索引
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_results_product_shop
            ON product_results(product_id, shop_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_states_product
            ON notification_states(product_id)
        """)

        conn.commit()
        conn.close()


class SQLiteProductResultRepository(ProductResultRepository):
    """掃描結果儲存"""

    def __init__(self, storage: SQLiteStorage):
        self.storage = storage

    def upsert_hourly_batch(self, results: Sequence[ProductResult]) -> None:
        """
        批次寫入掃描結果

        同一商品、商店與小時區間的結果合併為一筆，時間較新的觀測值優先。
        批次內先行合併，寫入時也只在新資料不舊於既有資料時才覆寫。

        Args:
            results: 掃描結果列表

        Raises:
            sqlite3.Error: 寫入失敗時
        """
        if not results:
            return

        # 統一為 UTC，比較與寫入的 ISO 字串才有一致的順序
        latest: Dict[tuple, tuple] = {}
        for result in results:
            timestamp = to_utc(result.timestamp)
            bucket_key = (result.product_id, result.shop_id, get_hour_bucket(timestamp))
            existing = latest.get(bucket_key)
            if existing is None or timestamp >= existing[0]:
                latest[bucket_key] = (timestamp, result)

        rows = [
            (
                product_id,
                shop_id,
                hour_bucket,
                result.product_url,
                result.price,
                int(result.is_available),
                timestamp.isoformat(),
            )
            for (product_id, shop_id, hour_bucket), (timestamp, result) in latest.items()
        ]

        conn = self.storage.connect()
        try:
            conn.executemany(
                """INSERT INTO product_results
                   (product_id, shop_id, hour_bucket, product_url, price, is_available, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT (product_id, shop_id, hour_bucket) DO UPDATE SET
                       product_url = excluded.product_url,
                       price = excluded.price,
                       is_available = excluded.is_available,
                       timestamp = excluded.timestamp
                   WHERE excluded.timestamp >= product_results.timestamp""",
                rows,
            )
            conn.commit()
        finally:
            conn.close()

    def get_results(self, product_id: str, shop_id: str) -> List[Dict]:
        """取得商品在指定商店的歷史結果（依小時排序）"""
        conn = self.storage.connect()
        try:
            cursor = conn.execute(
                """SELECT * FROM product_results
                   WHERE product_id = ? AND shop_id = ?
                   ORDER BY hour_bucket ASC""",
                (product_id, shop_id),
            )
            columns = [desc[0] for desc in cursor.description]
            rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
        finally:
            conn.close()

        for row in rows:
            row["is_available"] = bool(row["is_available"])
        return rows


class SQLiteNotificationStateRepository(NotificationStateRepository):
    """通知狀態儲存"""

    def __init__(self, storage: SQLiteStorage):
        self.storage = storage

    def get_all(self, product_ids: Optional[Iterable[str]] = None) -> List[NotificationState]:
        conn = self.storage.connect()
        try:
            if product_ids is None:
                cursor = conn.execute("SELECT * FROM notification_states")
            else:
                ids = list(product_ids)
                if not ids:
                    return []
                placeholders = ",".join("?" * len(ids))
                cursor = conn.execute(
                    f"SELECT * FROM notification_states WHERE product_id IN ({placeholders})",
                    ids,
                )
            columns = [desc[0] for desc in cursor.description]
            rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
        finally:
            conn.close()

        return [
            NotificationState(
                product_id=row["product_id"],
                shop_id=row["shop_id"],
                last_notified=(
                    datetime.fromisoformat(row["last_notified"])
                    if row["last_notified"] else None
                ),
                last_price=row["last_price"],
                was_available=bool(row["was_available"]),
            )
            for row in rows
        ]

    def set_batch(self, states: Sequence[NotificationState]) -> None:
        if not states:
            return
        rows = [
            (
                state.key,
                state.product_id,
                state.shop_id,
                state.last_notified.isoformat() if state.last_notified else None,
                state.last_price,
                int(state.was_available),
            )
            for state in states
        ]
        conn = self.storage.connect()
        try:
            conn.executemany(
                """INSERT OR REPLACE INTO notification_states
                   (key, product_id, shop_id, last_notified, last_price, was_available)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                rows,
            )
            conn.commit()
        finally:
            conn.close()

    def delete_batch(self, keys: Sequence[str]) -> None:
        if not keys:
            return
        conn = self.storage.connect()
        try:
            conn.executemany(
                "DELETE FROM notification_states WHERE key = ?",
                [(key,) for key in keys],
            )
            conn.commit()
        finally:
            conn.close()


class SQLiteAlertOutbox:
    """通知發送佇列（由獨立的發送服務讀取）"""

    def __init__(self, storage: SQLiteStorage):
        self.storage = storage

    def insert_batch(self, alerts: Sequence[Dict]) -> int:
        """
        批次新增通知

        Args:
            alerts: 每筆包含 recipient, product_id, shop_id, payload

        Returns:
            新增筆數
        """
        if not alerts:
            return 0
        now = utc_now().isoformat()
        rows = [
            (
                alert["recipient"],
                alert["product_id"],
                alert["shop_id"],
                json.dumps(alert["payload"], ensure_ascii=False),
                now,
            )
            for alert in alerts
        ]
        conn = self.storage.connect()
        try:
            conn.executemany(
                """INSERT INTO alerts (recipient, product_id, shop_id, payload, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                rows,
            )
            conn.commit()
        finally:
            conn.close()
        return len(rows)

    def get_pending(self, recipient: Optional[str] = None) -> List[Dict]:
        conn = self.storage.connect()
        try:
            if recipient is None:
                cursor = conn.execute("SELECT * FROM alerts ORDER BY id ASC")
            else:
                cursor = conn.execute(
                    "SELECT * FROM alerts WHERE recipient = ? ORDER BY id ASC",
                    (recipient,),
                )
            columns = [desc[0] for desc in cursor.description]
            rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
        finally:
            conn.close()

        for row in rows:
            row["payload"] = json.loads(row["payload"])
        return rows
