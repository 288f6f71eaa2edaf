"""
設定檔載入模組

提供執行參數（環境變數）、商店設定檔與追蹤清單的載入，並提供預設值填充功能。
"""

import json
import logging
import os
import sys
from dataclasses import dataclass, fields
from typing import Dict, Any, Optional, List

from .interfaces import ShopRepository, WatchlistRepository
from .models import ShopConfig, WatchlistProduct


# 預設值定義
DEFAULT_SETTINGS = {
    "shop_concurrency": 10,
    "product_concurrency": 3,
    "direct_hit_threshold": 0.95,
    "listing_threshold": 0.90,
    "max_candidates": 5,
    "request_timeout": 15.0,
    "navigation_timeout_ms": 10000,
    "action_timeout_ms": 500,
    "settle_delay_ms": 100,
    "max_retry_attempts": 0,
    "headless": True,
    "db_path": "data/monitor.db",
    "config_dir": "config",
    "log_level": "INFO",
}

# 設定欄位到環境變數名稱的映射
SETTING_TO_ENV = {name: name.upper() for name in DEFAULT_SETTINGS}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class MonitorSettings:
    """執行參數（並行數量、比對門檻、逾時等）"""
    shop_concurrency: int = DEFAULT_SETTINGS["shop_concurrency"]
    product_concurrency: int = DEFAULT_SETTINGS["product_concurrency"]
    direct_hit_threshold: float = DEFAULT_SETTINGS["direct_hit_threshold"]
    listing_threshold: float = DEFAULT_SETTINGS["listing_threshold"]
    max_candidates: int = DEFAULT_SETTINGS["max_candidates"]
    request_timeout: float = DEFAULT_SETTINGS["request_timeout"]
    navigation_timeout_ms: int = DEFAULT_SETTINGS["navigation_timeout_ms"]
    action_timeout_ms: int = DEFAULT_SETTINGS["action_timeout_ms"]
    settle_delay_ms: int = DEFAULT_SETTINGS["settle_delay_ms"]
    max_retry_attempts: int = DEFAULT_SETTINGS["max_retry_attempts"]
    headless: bool = DEFAULT_SETTINGS["headless"]
    db_path: str = DEFAULT_SETTINGS["db_path"]
    config_dir: str = DEFAULT_SETTINGS["config_dir"]
    log_level: str = DEFAULT_SETTINGS["log_level"]

    def __post_init__(self):
        if self.shop_concurrency < 1 or self.product_concurrency < 1:
            raise ValueError("Concurrency limits must be at least 1")
        for name in ("direct_hit_threshold", "listing_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")
        if self.max_candidates < 1:
            raise ValueError("max_candidates must be at least 1")

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "MonitorSettings":
        """
        從環境變數載入設定

        未設定的變數使用 DEFAULT_SETTINGS 中的預設值。

        Args:
            environ: 環境變數字典，預設為 os.environ

        Returns:
            MonitorSettings: 設定物件

        Raises:
            ValueError: 當數值格式錯誤時
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for f in fields(cls):
            env_name = SETTING_TO_ENV[f.name]
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            values[f.name] = _coerce(env_name, raw, type(DEFAULT_SETTINGS[f.name]))
        return cls(**values)


def _coerce(env_name: str, raw: str, target: type) -> Any:
    """將環境變數字串轉換為目標型別"""
    if target is bool:
        return raw.strip().lower() in ("1", "true", "yes", "on")
    try:
        return target(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {env_name}: {raw!r}")


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    初始化日誌設定

    Args:
        level: 日誌等級
        log_file: 日誌檔案路徑，None 表示只輸出到終端
    """
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


class FileShopRepository(ShopRepository):
    """
    從目錄載入商店設定

    每個商店一個 JSON 檔案，例如 config/shops/example-shop.json。
    """

    def __init__(self, shops_dir: str):
        self.shops_dir = shops_dir

    def get_all(self) -> List[ShopConfig]:
        if not os.path.isdir(self.shops_dir):
            raise FileNotFoundError(f"Shop config directory not found: {self.shops_dir}")

        shops = []
        for filename in sorted(os.listdir(self.shops_dir)):
            if not filename.endswith(".json"):
                continue
            path = os.path.join(self.shops_dir, filename)
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            try:
                shops.append(ShopConfig.from_dict(data))
            except KeyError as e:
                raise ValueError(f"Missing key {e} in shop config {path}")
        return shops

    def get_enabled(self) -> List[ShopConfig]:
        return [shop for shop in self.get_all() if shop.enabled]


class FileWatchlistRepository(WatchlistRepository):
    """從 JSON 檔案載入追蹤商品清單"""

    def __init__(self, watchlist_path: str):
        self.watchlist_path = watchlist_path

    def _load(self) -> List[WatchlistProduct]:
        with open(self.watchlist_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        # 支援 {"products": [...]} 或直接為列表
        items = data.get("products", []) if isinstance(data, dict) else data
        products = []
        for item in items:
            try:
                products.append(WatchlistProduct.from_dict(item))
            except KeyError as e:
                raise ValueError(
                    f"Missing key {e} in watchlist entry {item.get('name', '?')}"
                )
        return products

    def get_all(self) -> List[WatchlistProduct]:
        """取得所有啟用中的追蹤商品"""
        return [p for p in self._load() if not p.disabled]

    def get_by_id(self, product_id: str) -> Optional[WatchlistProduct]:
        for product in self._load():
            if product.id == product_id:
                return product
        return None


def shops_dir(config_dir: str) -> str:
    return os.path.join(config_dir, "shops")


def watchlist_path(config_dir: str) -> str:
    return os.path.join(config_dir, "watchlist.json")
