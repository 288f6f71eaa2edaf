"""
通知發送委派實作

- OutboxAlertDispatcher: 寫入 alerts 資料表，由獨立的發送服務處理實際傳送
- DryRunAlertDispatcher: 只記錄日誌，不標記狀態
"""

import logging
from typing import Dict, Sequence

from .interfaces import AlertDispatcher
from .models import ProductResult, ShopConfig, WatchlistProduct
from .storage import SQLiteAlertOutbox

logger = logging.getLogger(__name__)


def build_alert_payload(
    product: WatchlistProduct,
    result: ProductResult,
    shop: ShopConfig,
) -> Dict:
    """建立與發送管道無關的通知內容"""
    return {
        "product_id": product.id,
        "product_name": product.name,
        "shop_id": shop.id,
        "shop_name": shop.name,
        "product_url": result.product_url,
        "price": result.price,
        "max_price": product.price.max,
        "is_available": result.is_available,
        "timestamp": result.timestamp.isoformat(),
    }


class OutboxAlertDispatcher(AlertDispatcher):
    """每位關注者寫入一筆通知紀錄"""

    def __init__(self, outbox: SQLiteAlertOutbox):
        self.outbox = outbox

    def send_alert(
        self,
        product: WatchlistProduct,
        result: ProductResult,
        shop: ShopConfig,
        recipients: Sequence[str],
    ) -> bool:
        if not recipients:
            return False

        payload = build_alert_payload(product, result, shop)
        written = self.outbox.insert_batch([
            {
                "recipient": recipient,
                "product_id": product.id,
                "shop_id": shop.id,
                "payload": payload,
            }
            for recipient in recipients
        ])
        logger.info(
            f"Queued {written} alerts for {product.id} at {shop.id} "
            f"(price {result.price})"
        )
        return written > 0


class DryRunAlertDispatcher(AlertDispatcher):
    """只輸出日誌，返回 False 以免標記為已通知"""

    def send_alert(
        self,
        product: WatchlistProduct,
        result: ProductResult,
        shop: ShopConfig,
        recipients: Sequence[str],
    ) -> bool:
        logger.info(
            f"[DRY RUN] Would alert {len(recipients)} watchers: {product.name} "
            f"at {shop.name} for {result.price} ({result.product_url})"
        )
        return False
