"""
外部協作者介面

掃描核心只透過這些介面存取設定來源、持久化與通知發送。
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence

from .models import (
    NotificationState,
    ProductResult,
    ShopConfig,
    WatchlistProduct,
)


class ShopRepository(ABC):
    """商店設定來源"""

    @abstractmethod
    def get_enabled(self) -> List[ShopConfig]:
        pass


class WatchlistRepository(ABC):
    """追蹤商品來源"""

    @abstractmethod
    def get_all(self) -> List[WatchlistProduct]:
        pass

    @abstractmethod
    def get_by_id(self, product_id: str) -> Optional[WatchlistProduct]:
        pass


class ProductResultRepository(ABC):
    """掃描結果的批次寫入（以小時為單位去重）"""

    @abstractmethod
    def upsert_hourly_batch(self, results: Sequence[ProductResult]) -> None:
        pass


class NotificationStateRepository(ABC):
    """通知狀態持久化"""

    @abstractmethod
    def get_all(self, product_ids: Optional[Iterable[str]] = None) -> List[NotificationState]:
        pass

    @abstractmethod
    def set_batch(self, states: Sequence[NotificationState]) -> None:
        pass

    @abstractmethod
    def delete_batch(self, keys: Sequence[str]) -> None:
        """
        批次刪除通知狀態

        Args:
            keys: "productId:shopId" 格式的鍵
        """
        pass


class AlertDispatcher(ABC):
    """
    通知發送委派

    核心只決定「是否」呼叫 send_alert，不決定如何發送。
    """

    @abstractmethod
    def send_alert(
        self,
        product: WatchlistProduct,
        result: ProductResult,
        shop: ShopConfig,
        recipients: Sequence[str],
    ) -> bool:
        """
        發送通知

        Returns:
            是否發送成功；只有成功時才會標記為已通知
        """
        pass
