"""
通知狀態機

每個 (商品, 商店) 組合有兩種狀態：
- armed: 沒有狀態紀錄，或紀錄中 last_notified 為空；下一個符合條件的結果會觸發通知
- fired: 已通知；直到出現重置條件（商品下架或價格上漲）前不再重複通知

狀態變更先緩衝在記憶體，週期結束時由 flush_changes 批次寫入。
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Optional

from .interfaces import NotificationStateRepository
from .models import NotificationState, ProductResult, state_key, utc_now

logger = logging.getLogger(__name__)


class NotificationStateMachine:
    """
    通知狀態機

    狀態表由單次執行擁有，而非全域單例。
    使用執行緒並行時，同一個 key 的讀取到寫入需以 key_lock 包住。
    """

    def __init__(self, repository: Optional[NotificationStateRepository] = None):
        self.repository = repository
        self._states: Dict[str, NotificationState] = {}
        self._pending_upserts: Dict[str, NotificationState] = {}
        self._pending_deletes: set = set()
        self._lock = threading.RLock()
        self._key_locks: Dict[str, threading.Lock] = {}

    @contextmanager
    def key_lock(self, product_id: str, shop_id: str):
        """取得單一 (商品, 商店) 的互斥鎖"""
        key = state_key(product_id, shop_id)
        with self._lock:
            lock = self._key_locks.setdefault(key, threading.Lock())
        with lock:
            yield

    def load_from_repository(self, product_ids: Optional[Iterable[str]] = None) -> int:
        """
        從持久化來源載入狀態（重新啟動後恢復）

        Args:
            product_ids: 只載入這些商品的狀態，None 表示全部

        Returns:
            載入的狀態數量
        """
        if self.repository is None:
            return 0

        states = self.repository.get_all(product_ids)
        with self._lock:
            for state in states:
                self._states[state.key] = state
        logger.info(f"Loaded {len(states)} notification states")
        return len(states)

    def get_state(self, product_id: str, shop_id: str) -> Optional[NotificationState]:
        with self._lock:
            return self._states.get(state_key(product_id, shop_id))

    def should_notify(self, product_id: str, shop_id: str) -> bool:
        """狀態為 armed 時返回 True"""
        state = self.get_state(product_id, shop_id)
        return state is None or state.last_notified is None

    def mark_notified(self, result: ProductResult) -> None:
        """
        標記為已通知（armed -> fired）

        記錄當下的價格、供貨狀態與時間。
        """
        state = NotificationState(
            product_id=result.product_id,
            shop_id=result.shop_id,
            last_notified=utc_now(),
            last_price=result.price,
            was_available=result.is_available,
        )
        with self._lock:
            self._states[state.key] = state
            self._pending_upserts[state.key] = state
            self._pending_deletes.discard(state.key)
        logger.debug(f"Marked {state.key} as notified at price {result.price}")

    def update_tracked_state(self, result: ProductResult) -> bool:
        """
        依最新觀測值評估重置條件（fired -> armed）

        重置條件：
        1. 先前有貨，現在無貨
        2. 價格高於上次通知時的價格

        其他情況（價格再降或持續有貨）不更動狀態。

        Returns:
            是否發生重置
        """
        key = result.key
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return False

            reason = None
            if state.was_available and not result.is_available:
                reason = "became unavailable"
            elif (
                state.last_price is not None
                and result.price is not None
                and result.price > state.last_price
            ):
                reason = f"price increased {state.last_price} -> {result.price}"

            if reason is None:
                return False

            del self._states[key]
            self._pending_upserts.pop(key, None)
            self._pending_deletes.add(key)

        logger.info(f"Reset notification state for {key}: {reason}")
        return True

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending_upserts) + len(self._pending_deletes)

    def flush_changes(self) -> int:
        """
        將緩衝的狀態變更批次寫入

        寫入失敗時保留未寫入的變更並拋出例外。

        Returns:
            寫入的變更數量
        """
        if self.repository is None:
            with self._lock:
                self._pending_upserts.clear()
                self._pending_deletes.clear()
            return 0

        with self._lock:
            upserts = list(self._pending_upserts.values())
            deletes = sorted(self._pending_deletes)
            if not upserts and not deletes:
                return 0

            if upserts:
                self.repository.set_batch(upserts)
                self._pending_upserts.clear()
            if deletes:
                self.repository.delete_batch(deletes)
                self._pending_deletes.clear()

        logger.info(
            f"Flushed notification states: {len(upserts)} upserts, {len(deletes)} deletes"
        )
        return len(upserts) + len(deletes)
