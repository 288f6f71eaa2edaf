"""
測試共用工具：商店與商品設定、假的 HTTP Session
"""
import os
import sys
from typing import Dict, List, Optional

import requests

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.models import ShopConfig, WatchlistProduct

FIXTURES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "fixtures")

BASE_URL = "https://static-shop.example.com"


def load_fixture(name: str) -> str:
    with open(os.path.join(FIXTURES_DIR, name), "r", encoding="utf-8") as f:
        return f.read()


def make_shop(**overrides) -> ShopConfig:
    """建立測試用商店設定（欄位與 config/shops 範例相同）"""
    data = {
        "id": "test-shop",
        "name": "Test Shop",
        "base_url": BASE_URL,
        "search_url": "/search?q={query}",
        "engine": "static",
        "direct_hit_pattern": "/product/[^/?]+$",
        "selectors": {
            "search_page": {
                "article": "div.product-card",
                "title": {"type": "css", "value": ["h2.product-name", ".title"]},
                "product_url": {"type": "css", "value": "a.product-link", "extract": "href"},
            },
            "product_page": {
                "title": {"type": "css", "value": "h1.product-title"},
                "price": {"type": "css", "value": [".price-missing", ".price-current"], "format": "european"},
                "available": [
                    {"type": "css", "value": "button.add-to-cart:not([disabled])"},
                    {"type": "text", "value": "in stock"},
                ],
            },
        },
    }
    data.update(overrides)
    return ShopConfig.from_dict(data)


def make_product(
    name: str = "151 Booster Bundle",
    phrases: Optional[List[str]] = None,
    exclude: Optional[List[str]] = None,
    max_price: float = 150.0,
    min_price: Optional[float] = None,
    watchers: Optional[List[str]] = None,
    product_id: Optional[str] = None,
) -> WatchlistProduct:
    data = {
        "name": name,
        "search": {"phrases": phrases or [name], "exclude": exclude or []},
        "price": {"max": max_price, "min": min_price},
        "watchers": ["user-1"] if watchers is None else watchers,
    }
    if product_id:
        data["id"] = product_id
    return WatchlistProduct.from_dict(data)


class FakeResponse:
    def __init__(self, text: str, url: str, status_code: int = 200):
        self.text = text
        self.url = url
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error for url: {self.url}", response=self)


class FakeSession:
    """
    依 URL 返回預先設定內容的 Session

    pages: URL -> HTML
    redirects: URL -> 最終 URL（模擬搜尋直接導向商品頁）
    errors: URL -> 例外或狀態碼列表（依序使用）
    """

    def __init__(
        self,
        pages: Optional[Dict[str, str]] = None,
        redirects: Optional[Dict[str, str]] = None,
        errors: Optional[Dict[str, list]] = None,
    ):
        self.pages = pages or {}
        self.redirects = redirects or {}
        self.errors = {url: list(items) for url, items in (errors or {}).items()}
        self.headers: Dict[str, str] = {}
        self.requested: List[str] = []
        self.closed = False

    def get(self, url, timeout=None, allow_redirects=True):
        self.requested.append(url)
        pending = self.errors.get(url)
        if pending:
            error = pending.pop(0)
            if isinstance(error, int):
                return FakeResponse("", url, status_code=error)
            raise error

        final_url = self.redirects.get(url, url)
        if final_url not in self.pages:
            return FakeResponse("Not Found", final_url, status_code=404)
        return FakeResponse(self.pages[final_url], final_url)

    def close(self):
        self.closed = True
