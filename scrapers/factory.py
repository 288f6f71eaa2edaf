"""
爬蟲工廠

依商店設定的引擎種類建立引擎並包裝成 ShopScraper，
並將商店依引擎分組供排程使用。
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from playwright.sync_api import Browser

from core.config import MonitorSettings
from core.models import ShopConfig
from .engines import BrowserEngine, Engine, StaticEngine
from .matcher import ProductMatcher
from .shop_scraper import ShopScraper


@dataclass
class EngineGroups:
    """依引擎種類分組的商店"""
    static: List[ShopConfig] = field(default_factory=list)
    rendering: List[ShopConfig] = field(default_factory=list)


class ScraperFactory:
    """建立對應引擎的 ShopScraper"""

    def __init__(
        self,
        settings: Optional[MonitorSettings] = None,
        matcher: Optional[ProductMatcher] = None,
    ):
        self.settings = settings or MonitorSettings()
        self.matcher = matcher or ProductMatcher(
            direct_hit_threshold=self.settings.direct_hit_threshold,
            listing_threshold=self.settings.listing_threshold,
        )

    def create_engine(
        self,
        shop: ShopConfig,
        logger: Optional[logging.Logger] = None,
        browser: Optional[Browser] = None,
    ) -> Engine:
        """
        建立引擎

        Args:
            shop: 商店設定
            logger: 日誌記錄器
            browser: 共用瀏覽器（只用於 rendering 引擎）

        Raises:
            ValueError: 未知的引擎種類
        """
        if shop.engine == "static":
            return StaticEngine(
                shop,
                logger=logger,
                request_timeout=self.settings.request_timeout,
                max_retry_attempts=self.settings.max_retry_attempts,
            )
        if shop.engine == "rendering":
            return BrowserEngine(
                shop,
                browser=browser,
                logger=logger,
                headless=self.settings.headless,
                navigation_timeout_ms=self.settings.navigation_timeout_ms,
                action_timeout_ms=self.settings.action_timeout_ms,
                settle_delay_ms=self.settings.settle_delay_ms,
                max_retry_attempts=self.settings.max_retry_attempts,
            )
        raise ValueError(f"Unknown engine for shop {shop.id}: {shop.engine}")

    def create(
        self,
        shop: ShopConfig,
        logger: Optional[logging.Logger] = None,
        browser: Optional[Browser] = None,
    ) -> ShopScraper:
        engine = self.create_engine(shop, logger=logger, browser=browser)
        return ShopScraper(
            shop,
            engine,
            matcher=self.matcher,
            logger=logger,
            max_candidates=self.settings.max_candidates,
        )

    @staticmethod
    def group_by_engine(shops: List[ShopConfig]) -> EngineGroups:
        """將啟用中的商店依引擎種類分組（停用的商店會被略過）"""
        groups = EngineGroups()
        for shop in shops:
            if not shop.enabled:
                continue
            if shop.engine == "rendering":
                groups.rendering.append(shop)
            else:
                groups.static.append(shop)
        return groups
