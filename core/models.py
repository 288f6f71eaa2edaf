"""
資料模型定義

商店設定、追蹤商品、掃描結果與通知狀態的資料結構。
所有設定類別在一次執行期間皆視為不可變。
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Union


SELECTOR_TYPES = ("css", "xpath", "text")
EXTRACT_TYPES = ("text", "href", "innerHTML", "ownText")
PRICE_FORMATS = ("european", "us")
ENGINE_KINDS = ("static", "rendering")


def utc_now() -> datetime:
    """取得當前 UTC 時間"""
    return datetime.now(timezone.utc)


def generate_product_id(name: str) -> str:
    """
    將商品名稱轉換為 kebab-case ID

    例如: "151 Booster Bundle" -> "151-booster-bundle"
    """
    slug = re.sub(r"[^\w\s-]", "", name.lower().strip())
    slug = re.sub(r"\s+", "-", slug)
    return re.sub(r"-+", "-", slug)


@dataclass(frozen=True)
class Selector:
    """
    DOM 選擇器

    value 可為單一字串或備用選擇器列表，依序嘗試直到取得非空結果。
    """
    type: str = "css"
    value: Union[str, List[str]] = ""
    extract: str = "text"
    attribute: Optional[str] = None
    format: str = "european"
    match_self: bool = False

    def __post_init__(self):
        if self.type not in SELECTOR_TYPES:
            raise ValueError(f"Unknown selector type: {self.type}")
        if self.extract not in EXTRACT_TYPES:
            raise ValueError(f"Unknown extract type: {self.extract}")
        if self.format not in PRICE_FORMATS:
            raise ValueError(f"Unknown price format: {self.format}")
        # list 不可雜湊，統一轉為 tuple
        if isinstance(self.value, list):
            object.__setattr__(self, "value", tuple(self.value))

    @property
    def values(self) -> List[str]:
        """以列表形式返回所有備用選擇器"""
        if isinstance(self.value, (list, tuple)):
            return list(self.value)
        return [self.value]

    @classmethod
    def from_dict(cls, data: Union[str, dict]) -> "Selector":
        # 純字串視為 CSS 選擇器
        if isinstance(data, str):
            return cls(value=data)
        return cls(
            type=data.get("type", "css"),
            value=data.get("value", ""),
            extract=data.get("extract", "text"),
            attribute=data.get("attribute"),
            format=data.get("format", "european"),
            match_self=bool(data.get("match_self", False)),
        )


def _selector_list(data) -> tuple:
    if data is None:
        return ()
    if isinstance(data, list):
        return tuple(Selector.from_dict(item) for item in data)
    return (Selector.from_dict(data),)


@dataclass(frozen=True)
class SearchPageSelectors:
    """搜尋結果頁選擇器"""
    article: Selector
    title: Selector
    product_url: Selector


@dataclass(frozen=True)
class ProductPageSelectors:
    """商品頁選擇器"""
    price: Selector
    available: tuple = ()
    title: Optional[Selector] = None


@dataclass(frozen=True)
class ShopSelectors:
    search_page: SearchPageSelectors
    product_page: ProductPageSelectors

    @classmethod
    def from_dict(cls, data: dict) -> "ShopSelectors":
        search = data["search_page"]
        product = data["product_page"]
        return cls(
            search_page=SearchPageSelectors(
                article=Selector.from_dict(search["article"]),
                title=Selector.from_dict(search["title"]),
                product_url=Selector.from_dict(
                    search.get("product_url", {"value": "a", "extract": "href"})
                ),
            ),
            product_page=ProductPageSelectors(
                price=Selector.from_dict(product["price"]),
                available=_selector_list(product.get("available")),
                title=(
                    Selector.from_dict(product["title"])
                    if product.get("title") else None
                ),
            ),
        )


@dataclass(frozen=True)
class AntiBotConfig:
    """反爬蟲設定"""
    request_delay_ms: int = 0
    max_concurrency: Optional[int] = None


@dataclass(frozen=True)
class ShopConfig:
    """商店設定"""
    id: str
    name: str
    base_url: str
    search_url: str
    selectors: ShopSelectors
    engine: str = "static"
    direct_hit_pattern: Optional[str] = None
    disabled: bool = False
    anti_bot: AntiBotConfig = field(default_factory=AntiBotConfig)

    def __post_init__(self):
        if self.engine not in ENGINE_KINDS:
            raise ValueError(
                f"Unknown engine for shop {self.id}: {self.engine}. "
                f"Valid engines: {list(ENGINE_KINDS)}"
            )
        # 統一去除 base_url 結尾的斜線，方便組合路徑
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))

    @property
    def enabled(self) -> bool:
        return not self.disabled

    @classmethod
    def from_dict(cls, data: dict) -> "ShopConfig":
        anti_bot = data.get("anti_bot") or {}
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            base_url=data["base_url"],
            search_url=data["search_url"],
            selectors=ShopSelectors.from_dict(data["selectors"]),
            engine=data.get("engine", "static"),
            direct_hit_pattern=data.get("direct_hit_pattern"),
            disabled=bool(data.get("disabled", False)),
            anti_bot=AntiBotConfig(
                request_delay_ms=int(anti_bot.get("request_delay_ms", 0)),
                max_concurrency=anti_bot.get("max_concurrency"),
            ),
        )


@dataclass(frozen=True)
class SearchSpec:
    """商品搜尋設定：依序嘗試的搜尋詞與排除字詞"""
    phrases: tuple
    exclude: tuple = ()


@dataclass(frozen=True)
class PriceLimits:
    """價格門檻"""
    max: float
    min: Optional[float] = None


@dataclass(frozen=True)
class WatchlistProduct:
    """追蹤商品"""
    id: str
    name: str
    search: SearchSpec
    price: PriceLimits
    watchers: tuple = ()
    disabled: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "WatchlistProduct":
        search = data.get("search") or {}
        phrases = tuple(search.get("phrases") or [data["name"]])
        price = data["price"]
        return cls(
            id=data.get("id") or generate_product_id(data["name"]),
            name=data["name"],
            search=SearchSpec(
                phrases=phrases,
                exclude=tuple(search.get("exclude") or []),
            ),
            price=PriceLimits(
                max=float(price["max"]),
                min=float(price["min"]) if price.get("min") is not None else None,
            ),
            watchers=tuple(data.get("watchers") or []),
            disabled=bool(data.get("disabled", False)),
        )


@dataclass(frozen=True)
class ProductResult:
    """單次掃描結果"""
    product_id: str
    shop_id: str
    product_url: str
    price: Optional[float]
    is_available: bool
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def key(self) -> str:
        return state_key(self.product_id, self.shop_id)


@dataclass(frozen=True)
class Candidate:
    """搜尋結果頁中的候選商品（僅於比對期間存在）"""
    title: str
    url: str
    score: float


@dataclass(frozen=True)
class SearchHit:
    """搜尋結果：商品 URL，以及是否為搜尋直接導向商品頁"""
    url: str
    is_direct_hit: bool = False


@dataclass
class NotificationState:
    """商品/商店組合的通知狀態"""
    product_id: str
    shop_id: str
    last_notified: Optional[datetime] = None
    last_price: Optional[float] = None
    was_available: bool = False

    @property
    def key(self) -> str:
        return state_key(self.product_id, self.shop_id)


def state_key(product_id: str, shop_id: str) -> str:
    return f"{product_id}:{shop_id}"


def null_result(product_id: str, shop_id: str) -> ProductResult:
    """建立找不到商品或爬取失敗時的空結果"""
    return ProductResult(
        product_id=product_id,
        shop_id=shop_id,
        product_url="",
        price=None,
        is_available=False,
    )
