"""
搜尋流程導覽

對每個搜尋詞：組合搜尋 URL 並導覽，先檢查是否直接導向商品頁，
否則掃描搜尋結果列表的前幾筆，找出最符合的商品 URL。
"""

import logging
import re
from typing import List, Optional

from core.models import Candidate, SearchHit, ShopConfig, WatchlistProduct
from core.utils import build_search_url, normalize_url
from .engines.base import Element, Engine
from .matcher import ProductMatcher

# 只檢查搜尋結果的前幾筆
DEFAULT_MAX_CANDIDATES = 5


class SearchNavigator:
    """商品搜尋與 URL 探索"""

    def __init__(
        self,
        shop: ShopConfig,
        engine: Engine,
        matcher: ProductMatcher,
        logger: Optional[logging.Logger] = None,
        max_candidates: int = DEFAULT_MAX_CANDIDATES,
    ):
        self.shop = shop
        self.engine = engine
        self.matcher = matcher
        self.logger = logger or logging.getLogger(__name__)
        self.max_candidates = max_candidates
        self._direct_hit_re = (
            re.compile(shop.direct_hit_pattern) if shop.direct_hit_pattern else None
        )

    def find_product_url(self, product: WatchlistProduct) -> Optional[SearchHit]:
        """
        依序嘗試搜尋詞，找出商品頁 URL

        第一個找到結果的搜尋詞即停止；全部搜尋詞都沒有結果時返回 None（非錯誤）。

        Args:
            product: 追蹤商品

        Returns:
            SearchHit，找不到時返回 None

        Raises:
            Exception: 導覽失敗時（由引擎拋出）
        """
        for phrase in product.search.phrases:
            search_url = build_search_url(self.shop.base_url, self.shop.search_url, phrase)
            self.logger.debug(f"[{self.shop.id}] Searching {product.id} with {phrase!r}: {search_url}")
            self.engine.goto(search_url)

            hit = self._check_direct_hit(product, phrase)
            if hit:
                return hit

            # 直接命中驗證失敗時，在同一次搜尋結果中繼續比對列表
            url = self._find_in_search_results(product, phrase)
            if url:
                return SearchHit(url=normalize_url(url, self.shop.base_url), is_direct_hit=False)

        self.logger.info(f"[{self.shop.id}] Product not found: {product.id}")
        return None

    def navigate_to_product_page(self, url: str) -> None:
        self.engine.goto(url)

    def _check_direct_hit(self, product: WatchlistProduct, phrase: str) -> Optional[SearchHit]:
        """搜尋後的 URL 符合直接命中樣式時，驗證商品頁標題"""
        if self._direct_hit_re is None:
            return None

        current_url = self.engine.get_current_url()
        if not current_url or not self._direct_hit_re.search(current_url):
            return None

        self.logger.info(
            f"[{self.shop.id}] Direct hit detected for {product.id}: {current_url}"
        )
        if self._validate_direct_hit(product, phrase):
            return SearchHit(url=current_url, is_direct_hit=True)

        self.logger.info(
            f"[{self.shop.id}] Direct hit rejected for {product.id}, checking listing"
        )
        return None

    def _validate_direct_hit(self, product: WatchlistProduct, phrase: str) -> bool:
        title_selector = self.shop.selectors.product_page.title
        if title_selector is None:
            # 沒有設定商品頁標題選擇器時直接接受
            return True

        title = self.engine.extract(title_selector)
        if not title:
            self.logger.debug(
                f"[{self.shop.id}] Could not extract product page title for {product.id}"
            )
            return False

        score = self.matcher.validate_title(title, phrase, product, self.shop.id)
        if score is None:
            return False

        if not self.matcher.is_valid_direct_hit_score(score):
            self.logger.debug(
                f"[{self.shop.id}] Direct hit score too low for {product.id}: {title!r} "
                f"score={score:.2f} < {self.matcher.direct_hit_threshold:.2f}"
            )
            return False

        self.logger.info(f"[{self.shop.id}] Direct hit validated: {title!r} score={score:.2f}")
        return True

    def _find_in_search_results(self, product: WatchlistProduct, phrase: str) -> Optional[str]:
        articles = self.engine.extract_all(self.shop.selectors.search_page.article)
        if not articles:
            self.logger.info(
                f"[{self.shop.id}] No product articles on search page for {product.id} ({phrase!r})"
            )
            return None

        candidates: List[Candidate] = []
        for article in articles[:self.max_candidates]:
            title = self._article_title(article)
            url = self._article_url(article)
            if not title or not url:
                continue

            score = self.matcher.validate_title(title, phrase, product, self.shop.id)
            if score is not None:
                candidates.append(Candidate(title=title, url=url, score=score))

        return self.matcher.select_best_candidate(candidates, product, phrase, self.shop.id)

    def _article_title(self, article: Element) -> Optional[str]:
        selector = self.shop.selectors.search_page.title
        # 設定 attribute 時直接讀取 article 本身的屬性
        if selector.attribute:
            return article.get_attribute(selector.attribute)
        element = article.find(selector)
        return element.get_text() if element else None

    def _article_url(self, article: Element) -> Optional[str]:
        selector = self.shop.selectors.search_page.product_url
        element = article.find(selector)
        if element is None:
            return None
        return element.get_attribute(selector.attribute or "href")
