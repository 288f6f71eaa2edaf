"""
商品標題比對

以 rapidfuzz 的 token_set_ratio 計算標題與搜尋詞的相似度（0~1），
並依排除字詞過濾掉配件、整箱等非目標商品。
"""

import logging
from typing import Callable, List, Optional

from rapidfuzz import fuzz

from core.models import Candidate, WatchlistProduct
from core.utils import normalize_for_matching

logger = logging.getLogger(__name__)

Scorer = Callable[[str, str], float]


def token_set_score(title: str, phrase: str) -> float:
    """正規化後的 token set 相似度，範圍 0~1"""
    return fuzz.token_set_ratio(
        normalize_for_matching(title), normalize_for_matching(phrase)
    ) / 100.0


class ProductMatcher:
    """
    商品標題比對器

    兩種門檻：
    - direct_hit_threshold: 搜尋直接導向商品頁時使用（較嚴格，沒有其他候選可比較）
    - listing_threshold: 從搜尋結果列表挑選候選時使用
    """

    def __init__(
        self,
        direct_hit_threshold: float = 0.95,
        listing_threshold: float = 0.90,
        scorer: Optional[Scorer] = None,
    ):
        self.direct_hit_threshold = direct_hit_threshold
        self.listing_threshold = listing_threshold
        self.scorer = scorer or token_set_score

    def is_excluded(self, title: str, product: WatchlistProduct) -> bool:
        """標題是否包含任一排除字詞（不分大小寫）"""
        title_lower = title.lower()
        return any(word.lower() in title_lower for word in product.search.exclude if word)

    def validate_title(
        self,
        title: str,
        phrase: str,
        product: WatchlistProduct,
        shop_id: str,
    ) -> Optional[float]:
        """
        驗證標題並計算相似度

        Args:
            title: 候選商品標題
            phrase: 搜尋詞
            product: 追蹤商品
            shop_id: 商店 ID（僅用於日誌）

        Returns:
            相似度分數（0~1），標題含排除字詞時返回 None
        """
        if self.is_excluded(title, product):
            logger.debug(
                f"[{shop_id}] Title excluded for {product.id}: {title!r} "
                f"(exclude={list(product.search.exclude)})"
            )
            return None
        return self.scorer(title, phrase)

    def is_valid_direct_hit_score(self, score: float) -> bool:
        return score >= self.direct_hit_threshold

    def is_valid_listing_score(self, score: float) -> bool:
        return score >= self.listing_threshold

    def select_best_candidate(
        self,
        candidates: List[Candidate],
        product: WatchlistProduct,
        phrase: str,
        shop_id: str,
    ) -> Optional[str]:
        """
        從候選中挑選分數最高且通過列表門檻者

        分數相同時保留先出現的候選（sorted 為穩定排序）。

        Returns:
            最佳候選的 URL，沒有候選通過門檻時返回 None
        """
        if not candidates:
            return None

        ranked = sorted(candidates, key=lambda c: c.score, reverse=True)
        best = ranked[0]

        if not self.is_valid_listing_score(best.score):
            logger.info(
                f"[{shop_id}] Best match too weak for {product.id}: {best.title!r} "
                f"score={best.score:.2f} < {self.listing_threshold:.2f} (phrase {phrase!r})"
            )
            return None

        logger.info(
            f"[{shop_id}] Matched {product.id}: {best.title!r} score={best.score:.2f}"
        )
        return best.url
