"""
掃描週期執行器

- 靜態週期：商店層級與商品層級兩層執行緒池，不啟動瀏覽器
- 渲染週期：整個週期共用一個瀏覽器，商店與商品依序處理以限制記憶體用量

每個 (商店, 商品) 組合：寫入結果緩衝 -> 評估狀態重置 -> 判斷是否通知。
單一組合失敗只記錄錯誤，不影響同一週期的其他組合。
"""

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from playwright.sync_api import Browser, sync_playwright

from core.config import MonitorSettings
from core.interfaces import AlertDispatcher
from core.models import ProductResult, ShopConfig, WatchlistProduct
from core.notification_state import NotificationStateMachine
from core.result_buffer import ResultBuffer
from scrapers.factory import ScraperFactory

logger = logging.getLogger(__name__)


# 渲染週期共用瀏覽器的啟動參數
BROWSER_LAUNCH_ARGS = [
    "--disable-gpu",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--no-sandbox",
    "--disable-background-networking",
    "--disable-default-apps",
    "--disable-sync",
    "--disable-translate",
    "--metrics-recording-only",
    "--mute-audio",
    "--no-first-run",
    "--safebrowsing-disable-auto-update",
]


@dataclass
class CycleStats:
    """單一週期的統計"""
    engine: str
    shops: int = 0
    scanned: int = 0
    failed: int = 0
    alerts: int = 0
    duration_seconds: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, name: str) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + 1)

    def to_dict(self) -> dict:
        return {
            "engine": self.engine,
            "shops": self.shops,
            "scanned": self.scanned,
            "failed": self.failed,
            "alerts": self.alerts,
            "duration_seconds": round(self.duration_seconds, 2),
        }


def is_alert_eligible(product: WatchlistProduct, result: ProductResult) -> bool:
    """
    判斷結果是否符合通知條件

    有貨、有價格、不高於最高價，且不低於最低價（若有設定）。
    """
    if not result.is_available or result.price is None:
        return False
    if result.price > product.price.max:
        return False
    if product.price.min is not None and result.price < product.price.min:
        return False
    return True


class ScanCycleRunner:
    """執行靜態與渲染兩種掃描週期"""

    def __init__(
        self,
        scraper_factory: ScraperFactory,
        result_buffer: ResultBuffer,
        state_machine: NotificationStateMachine,
        dispatcher: AlertDispatcher,
        settings: Optional[MonitorSettings] = None,
        playwright_factory: Callable = sync_playwright,
    ):
        self.scraper_factory = scraper_factory
        self.result_buffer = result_buffer
        self.state_machine = state_machine
        self.dispatcher = dispatcher
        self.settings = settings or MonitorSettings()
        self.playwright_factory = playwright_factory

    def run_static_cycle(
        self,
        shops: List[ShopConfig],
        products: List[WatchlistProduct],
    ) -> CycleStats:
        """
        執行靜態週期

        Args:
            shops: 商店列表（只處理 static 引擎的啟用商店）
            products: 追蹤商品列表

        Returns:
            CycleStats: 週期統計
        """
        static_shops = self.scraper_factory.group_by_engine(shops).static
        stats = CycleStats(engine="static", shops=len(static_shops))
        if not static_shops or not products:
            return stats

        logger.info(
            f"Starting static scan cycle: {len(static_shops)} shops, {len(products)} products"
        )
        start = time.monotonic()

        max_workers = min(self.settings.shop_concurrency, len(static_shops))
        with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_shop = {
                executor.submit(self._scan_shop_concurrent, shop, products, stats): shop
                for shop in static_shops
            }
            for future in concurrent.futures.as_completed(future_to_shop):
                shop = future_to_shop[future]
                try:
                    future.result()
                except Exception as e:
                    logger.error(f"Shop worker failed for {shop.id}: {e}")

        stats.duration_seconds = time.monotonic() - start
        self._log_cycle_completion(stats)
        return stats

    def run_rendering_cycle(
        self,
        shops: List[ShopConfig],
        products: List[WatchlistProduct],
    ) -> CycleStats:
        """
        執行渲染週期

        啟動一個瀏覽器供所有渲染商店共用，週期結束時（包含錯誤）一定會關閉。

        Raises:
            Exception: 無法啟動瀏覽器時（整個渲染週期中止）
        """
        rendering_shops = self.scraper_factory.group_by_engine(shops).rendering
        stats = CycleStats(engine="rendering", shops=len(rendering_shops))
        if not rendering_shops or not products:
            return stats

        logger.info(
            f"Starting rendering scan cycle: {len(rendering_shops)} shops, {len(products)} products"
        )
        start = time.monotonic()

        with self.playwright_factory() as p:
            browser = p.chromium.launch(
                headless=self.settings.headless, args=BROWSER_LAUNCH_ARGS
            )
            try:
                for shop in rendering_shops:
                    for product in products:
                        self._scan_pair(shop, product, stats, browser=browser)
            finally:
                browser.close()

        stats.duration_seconds = time.monotonic() - start
        self._log_cycle_completion(stats)
        return stats

    def _scan_shop_concurrent(
        self,
        shop: ShopConfig,
        products: List[WatchlistProduct],
        stats: CycleStats,
    ) -> None:
        # 商店可覆寫商品層級的並行數
        workers = shop.anti_bot.max_concurrency or self.settings.product_concurrency
        with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
            futures = [
                executor.submit(self._scan_pair, shop, product, stats)
                for product in products
            ]
            concurrent.futures.wait(futures)

    def _scan_pair(
        self,
        shop: ShopConfig,
        product: WatchlistProduct,
        stats: CycleStats,
        browser: Optional[Browser] = None,
    ) -> None:
        """處理單一 (商店, 商品) 組合，任何例外都只記錄不拋出"""
        try:
            scraper = self.scraper_factory.create(shop, browser=browser)
            result = scraper.scrape_product(product)
            if self.handle_result(product, result, shop):
                stats.increment("alerts")
            stats.increment("scanned")
        except Exception as e:
            stats.increment("failed")
            logger.error(
                f"Error scanning product {product.id} at shop {shop.id} ({shop.engine}): {e}",
                exc_info=True,
            )

    def handle_result(
        self,
        product: WatchlistProduct,
        result: ProductResult,
        shop: ShopConfig,
    ) -> bool:
        """
        處理掃描結果

        依序：寫入緩衝、評估狀態重置、判斷並發送通知。
        同一 key 的狀態讀寫在 key_lock 內完成。

        Returns:
            是否成功發送通知
        """
        logger.info(
            f"[{shop.id}] Scanned {product.id}: price={result.price} "
            f"available={result.is_available} url={result.product_url}"
        )
        self.result_buffer.add(result)

        with self.state_machine.key_lock(product.id, shop.id):
            self.state_machine.update_tracked_state(result)

            if not is_alert_eligible(product, result):
                return False
            if not self.state_machine.should_notify(product.id, shop.id):
                return False
            if not product.watchers:
                logger.debug(f"No watchers for {product.id}, skipping alert")
                return False

            sent = self.dispatcher.send_alert(product, result, shop, list(product.watchers))
            if sent:
                self.state_machine.mark_notified(result)
            return bool(sent)

    def _log_cycle_completion(self, stats: CycleStats) -> None:
        logger.info(
            f"{stats.engine.capitalize()} scan cycle completed in {stats.duration_seconds:.1f}s: "
            f"{stats.scanned} scanned, {stats.failed} failed, {stats.alerts} alerts"
        )
