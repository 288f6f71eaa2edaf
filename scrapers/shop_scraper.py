"""
單一商店的商品爬取流程

搜尋 -> 開啟商品頁 -> 擷取價格與供貨狀態 -> 返回 ProductResult。
"""

import logging
from typing import Optional

from core.models import ProductResult, SearchHit, ShopConfig, WatchlistProduct, null_result, utc_now
from core.utils import parse_price
from .engines.base import Engine
from .matcher import ProductMatcher
from .navigator import SearchNavigator


class ShopScraper:
    """
    商店爬蟲

    每個 (商店, 商品) 組合使用一個實例；scrape_product 結束時一定會關閉引擎。
    """

    def __init__(
        self,
        shop: ShopConfig,
        engine: Engine,
        matcher: Optional[ProductMatcher] = None,
        logger: Optional[logging.Logger] = None,
        max_candidates: int = 5,
    ):
        self.shop = shop
        self.engine = engine
        self.matcher = matcher or ProductMatcher()
        self.logger = logger or logging.getLogger(__name__)
        self.navigator = SearchNavigator(
            shop, engine, self.matcher, logger=self.logger, max_candidates=max_candidates
        )

    @property
    def engine_kind(self) -> str:
        return self.engine.kind

    def scrape_product(self, product: WatchlistProduct) -> ProductResult:
        """
        爬取商品價格與供貨狀態

        任何錯誤都會被記錄並轉為空結果，此方法不會拋出例外。

        Args:
            product: 追蹤商品

        Returns:
            ProductResult: 找不到商品或失敗時 price=None, is_available=False
        """
        try:
            hit = self.navigator.find_product_url(product)
            if hit is None:
                return null_result(product.id, self.shop.id)
            return self._scrape_product_page(product, hit)
        except Exception as e:
            self.logger.error(
                f"[{self.shop.id}] Error scraping {product.id} ({self.engine.kind}): {e}"
            )
            return null_result(product.id, self.shop.id)
        finally:
            self.close()

    def _scrape_product_page(self, product: WatchlistProduct, hit: SearchHit) -> ProductResult:
        # 直接命中時已在商品頁，不需要再次導覽
        if not hit.is_direct_hit:
            self.navigator.navigate_to_product_page(hit.url)

        price = self.extract_price()
        is_available = self.check_availability()

        self.logger.debug(
            f"[{self.shop.id}] {product.id}: price={price} available={is_available} url={hit.url}"
        )
        return ProductResult(
            product_id=product.id,
            shop_id=self.shop.id,
            product_url=hit.url,
            price=price,
            is_available=is_available,
            timestamp=utc_now(),
        )

    def extract_price(self) -> Optional[float]:
        selector = self.shop.selectors.product_page.price
        price_text = self.engine.extract(selector)
        if not price_text:
            return None

        price = parse_price(price_text, selector.format)
        if price is None:
            self.logger.warning(
                f"[{self.shop.id}] Could not parse price {price_text!r} ({selector.format})"
            )
        return price

    def check_availability(self) -> bool:
        """任一供貨選擇器有符合的元素即視為有貨"""
        for selector in self.shop.selectors.product_page.available:
            if self.engine.exists(selector):
                return True
        return False

    def close(self) -> None:
        try:
            self.engine.close()
        except Exception as e:
            self.logger.debug(f"[{self.shop.id}] Failed to close engine: {e}")
