"""
掃描結果緩衝區

一個掃描週期內的結果先累積在記憶體中，週期結束時以單次批次寫入持久化。
"""

import logging
import threading
from typing import List

from .interfaces import ProductResultRepository
from .models import ProductResult

logger = logging.getLogger(__name__)


class ResultBuffer:
    """
    掃描結果緩衝區（執行緒安全）

    寫入失敗時保留緩衝內容，由呼叫者決定是否重試。
    """

    def __init__(self, repository: ProductResultRepository):
        self.repository = repository
        self._results: List[ProductResult] = []
        self._lock = threading.Lock()

    def add(self, result: ProductResult) -> None:
        with self._lock:
            self._results.append(result)

    def size(self) -> int:
        with self._lock:
            return len(self._results)

    def snapshot(self) -> List[ProductResult]:
        """取得目前緩衝內容的複本"""
        with self._lock:
            return list(self._results)

    def clear(self) -> None:
        with self._lock:
            self._results.clear()

    def flush(self) -> int:
        """
        將緩衝結果批次寫入

        Returns:
            寫入的結果數量（合併前）

        Raises:
            Exception: 持久化失敗時原樣拋出，緩衝內容保留
        """
        with self._lock:
            pending = list(self._results)
            if not pending:
                logger.debug("Result buffer empty, nothing to flush")
                return 0

            try:
                self.repository.upsert_hourly_batch(pending)
            except Exception as e:
                logger.error(f"Failed to flush {len(pending)} results: {e}")
                raise

            # 只移除已寫入的部分
            del self._results[:len(pending)]

        logger.info(f"Flushed {len(pending)} results")
        return len(pending)
