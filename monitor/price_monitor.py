"""
價格監控主流程

載入商店與追蹤清單 -> 載入通知狀態 -> 執行靜態週期與渲染週期 ->
批次寫入掃描結果與通知狀態。設計為每次執行一個完整週期（由外部排程觸發）。
"""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from core.config import MonitorSettings
from core.interfaces import (
    AlertDispatcher,
    ProductResultRepository,
    ShopRepository,
    WatchlistRepository,
)
from core.models import ShopConfig, WatchlistProduct
from core.notification_state import NotificationStateMachine
from core.result_buffer import ResultBuffer
from scrapers.factory import ScraperFactory
from .scan_cycle import CycleStats, ScanCycleRunner

logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    """完整週期的摘要"""
    static: CycleStats
    rendering: CycleStats
    results_flushed: int = 0
    state_changes_flushed: int = 0
    duration_seconds: float = 0.0
    rendering_error: Optional[str] = None

    @property
    def scanned(self) -> int:
        return self.static.scanned + self.rendering.scanned

    @property
    def failed(self) -> int:
        return self.static.failed + self.rendering.failed

    @property
    def alerts(self) -> int:
        return self.static.alerts + self.rendering.alerts

    def to_dict(self) -> dict:
        return {
            "static": self.static.to_dict(),
            "rendering": self.rendering.to_dict(),
            "scanned": self.scanned,
            "failed": self.failed,
            "alerts": self.alerts,
            "results_flushed": self.results_flushed,
            "state_changes_flushed": self.state_changes_flushed,
            "duration_seconds": round(self.duration_seconds, 2),
            "rendering_error": self.rendering_error,
        }


class PriceMonitor:
    """
    價格監控

    通知狀態表由此物件擁有的 NotificationStateMachine 持有，
    以 initialize() 載入、run_full_scan_cycle() 結束時寫回。
    """

    def __init__(
        self,
        shop_repository: ShopRepository,
        watchlist_repository: WatchlistRepository,
        product_result_repository: ProductResultRepository,
        scraper_factory: ScraperFactory,
        state_machine: NotificationStateMachine,
        dispatcher: AlertDispatcher,
        settings: Optional[MonitorSettings] = None,
        load_state: bool = True,
        runner: Optional[ScanCycleRunner] = None,
    ):
        self.shop_repository = shop_repository
        self.watchlist_repository = watchlist_repository
        self.state_machine = state_machine
        self.settings = settings or MonitorSettings()
        self.load_state = load_state

        self.result_buffer = ResultBuffer(product_result_repository)
        self.runner = runner or ScanCycleRunner(
            scraper_factory,
            self.result_buffer,
            state_machine,
            dispatcher,
            settings=self.settings,
        )

        self.shops: List[ShopConfig] = []
        self.products: List[WatchlistProduct] = []
        self.last_summary: Optional[ScanSummary] = None

    def initialize(self) -> None:
        """
        載入商店、追蹤商品與通知狀態

        Raises:
            ValueError: 沒有啟用中的商店或沒有追蹤商品時
        """
        logger.info("Initializing price monitor...")

        self.shops = self.shop_repository.get_enabled()
        if not self.shops:
            raise ValueError("No shop configurations found")

        self.products = self.watchlist_repository.get_all()
        if not self.products:
            raise ValueError("No products in watchlist")

        if self.load_state:
            self.state_machine.load_from_repository([p.id for p in self.products])

        logger.info(
            f"Price monitor initialized: {len(self.shops)} shops, {len(self.products)} products"
        )

    def run_full_scan_cycle(
        self,
        run_static: bool = True,
        run_rendering: bool = True,
    ) -> ScanSummary:
        """
        執行完整掃描週期

        先執行靜態週期再執行渲染週期。渲染週期無法啟動瀏覽器時，
        仍會寫入已取得的結果與狀態，之後再拋出該錯誤。

        Args:
            run_static: 是否執行靜態週期
            run_rendering: 是否執行渲染週期

        Returns:
            ScanSummary: 週期摘要

        Raises:
            Exception: 渲染週期中止或寫入失敗時
        """
        static_stats = CycleStats(engine="static")
        rendering_stats = CycleStats(engine="rendering")

        if not self.products:
            logger.info("No products to scan, skipping cycle")
            self.last_summary = ScanSummary(static=static_stats, rendering=rendering_stats)
            return self.last_summary

        logger.info(
            f"Starting full scan cycle: {len(self.shops)} shops, {len(self.products)} products"
        )
        start = time.monotonic()
        self.result_buffer.clear()

        if run_static:
            static_stats = self.runner.run_static_cycle(self.shops, self.products)

        rendering_error: Optional[Exception] = None
        if run_rendering:
            try:
                rendering_stats = self.runner.run_rendering_cycle(self.shops, self.products)
            except Exception as e:
                logger.error(f"Rendering scan cycle aborted: {e}")
                rendering_error = e

        results_flushed, state_flushed = self.flush_all_changes()

        summary = ScanSummary(
            static=static_stats,
            rendering=rendering_stats,
            results_flushed=results_flushed,
            state_changes_flushed=state_flushed,
            duration_seconds=time.monotonic() - start,
            rendering_error=str(rendering_error) if rendering_error else None,
        )
        self.last_summary = summary

        logger.info(
            f"Full scan cycle completed in {summary.duration_seconds:.1f}s: "
            f"{summary.scanned} scanned, {summary.failed} failed, {summary.alerts} alerts"
        )

        if rendering_error is not None:
            raise rendering_error
        return summary

    def flush_all_changes(self) -> tuple:
        """
        寫入掃描結果與通知狀態

        掃描結果寫入失敗時仍會嘗試寫入通知狀態，之後拋出原本的錯誤。

        Returns:
            (寫入的結果數量, 寫入的狀態變更數量)
        """
        try:
            results_flushed = self.result_buffer.flush()
        finally:
            state_flushed = self.state_machine.flush_changes()
        return results_flushed, state_flushed
