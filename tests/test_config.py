#!/usr/bin/env python3
"""
測試設定載入：環境變數、商店設定檔與追蹤清單
"""
import json
import unittest
import os
import tempfile
import shutil

import helpers  # noqa: F401

from core.config import (
    DEFAULT_SETTINGS,
    FileShopRepository,
    FileWatchlistRepository,
    MonitorSettings,
    shops_dir,
    watchlist_path,
)

SHOP_DATA = {
    "id": "poke-shop",
    "name": "Poke Shop",
    "base_url": "https://poke-shop.example.com/",
    "search_url": "/szukaj?q={query}",
    "selectors": {
        "search_page": {"article": ".product", "title": ".name"},
        "product_page": {"price": ".price", "available": ".buy"},
    },
}


class TestMonitorSettings(unittest.TestCase):
    def test_defaults(self):
        """測試未設定環境變數時使用預設值"""
        settings = MonitorSettings.from_env({})
        self.assertEqual(settings.shop_concurrency, DEFAULT_SETTINGS["shop_concurrency"])
        self.assertEqual(settings.product_concurrency, 3)
        self.assertEqual(settings.direct_hit_threshold, 0.95)
        self.assertEqual(settings.listing_threshold, 0.90)
        self.assertEqual(settings.max_retry_attempts, 0)
        self.assertTrue(settings.headless)

    def test_env_overrides(self):
        """測試環境變數覆寫與型別轉換"""
        settings = MonitorSettings.from_env({
            "SHOP_CONCURRENCY": "4",
            "LISTING_THRESHOLD": "0.85",
            "HEADLESS": "false",
            "DB_PATH": "/tmp/monitor.db",
            "MAX_RETRY_ATTEMPTS": "",
        })
        self.assertEqual(settings.shop_concurrency, 4)
        self.assertEqual(settings.listing_threshold, 0.85)
        self.assertFalse(settings.headless)
        self.assertEqual(settings.db_path, "/tmp/monitor.db")
        self.assertEqual(settings.max_retry_attempts, 0)

    def test_invalid_number(self):
        """測試數值格式錯誤"""
        with self.assertRaises(ValueError) as ctx:
            MonitorSettings.from_env({"SHOP_CONCURRENCY": "ten"})
        self.assertIn("SHOP_CONCURRENCY", str(ctx.exception))

    def test_out_of_range(self):
        """測試超出範圍的門檻與並行數"""
        with self.assertRaises(ValueError):
            MonitorSettings(direct_hit_threshold=1.5)
        with self.assertRaises(ValueError):
            MonitorSettings(product_concurrency=0)
        with self.assertRaises(ValueError):
            MonitorSettings(max_candidates=0)


class FileRepositoryTestCase(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        os.makedirs(shops_dir(self.temp_dir))

    def tearDown(self):
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)

    def write_shop(self, filename, data):
        with open(os.path.join(shops_dir(self.temp_dir), filename), "w", encoding="utf-8") as f:
            json.dump(data, f)

    def write_watchlist(self, data):
        with open(watchlist_path(self.temp_dir), "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)


class TestFileShopRepository(FileRepositoryTestCase):
    def test_load_shops(self):
        """測試載入商店設定並略過非 JSON 檔案"""
        self.write_shop("b.json", dict(SHOP_DATA, id="b-shop", engine="rendering"))
        self.write_shop("a.json", SHOP_DATA)
        self.write_shop("notes.txt", {})

        shops = FileShopRepository(shops_dir(self.temp_dir)).get_all()
        self.assertEqual([s.id for s in shops], ["poke-shop", "b-shop"])
        self.assertEqual(shops[0].base_url, "https://poke-shop.example.com")
        self.assertEqual(shops[0].engine, "static")
        self.assertEqual(shops[1].engine, "rendering")
        # 預設商品連結選擇器
        self.assertEqual(shops[0].selectors.search_page.product_url.extract, "href")

    def test_enabled_only(self):
        """測試只返回啟用中的商店"""
        self.write_shop("a.json", SHOP_DATA)
        self.write_shop("b.json", dict(SHOP_DATA, id="off", disabled=True))
        shops = FileShopRepository(shops_dir(self.temp_dir)).get_enabled()
        self.assertEqual([s.id for s in shops], ["poke-shop"])

    def test_anti_bot_settings(self):
        """測試反爬蟲設定"""
        self.write_shop("a.json", dict(SHOP_DATA, anti_bot={"request_delay_ms": 750, "max_concurrency": 1}))
        shop = FileShopRepository(shops_dir(self.temp_dir)).get_all()[0]
        self.assertEqual(shop.anti_bot.request_delay_ms, 750)
        self.assertEqual(shop.anti_bot.max_concurrency, 1)

    def test_missing_key(self):
        """測試缺少必要欄位"""
        data = dict(SHOP_DATA)
        del data["search_url"]
        self.write_shop("a.json", data)
        with self.assertRaises(ValueError) as ctx:
            FileShopRepository(shops_dir(self.temp_dir)).get_all()
        self.assertIn("search_url", str(ctx.exception))

    def test_unknown_engine(self):
        """測試未知的引擎種類"""
        self.write_shop("a.json", dict(SHOP_DATA, engine="headless-chrome"))
        with self.assertRaises(ValueError):
            FileShopRepository(shops_dir(self.temp_dir)).get_all()

    def test_missing_directory(self):
        """測試設定目錄不存在"""
        with self.assertRaises(FileNotFoundError):
            FileShopRepository(os.path.join(self.temp_dir, "nope")).get_all()


class TestFileWatchlistRepository(FileRepositoryTestCase):
    def test_load_products(self):
        """測試載入追蹤清單與預設值"""
        self.write_watchlist({"products": [
            {
                "id": "sv151-bundle",
                "name": "151 Booster Bundle",
                "search": {"phrases": ["151 Bundle"], "exclude": ["case"]},
                "price": {"max": 150, "min": 60},
                "watchers": ["user-1"],
            },
            {"name": "Prismatic Evolutions ETB", "price": {"max": 320}},
            {"name": "Old Product", "price": {"max": 10}, "disabled": True},
        ]})
        repo = FileWatchlistRepository(watchlist_path(self.temp_dir))
        products = repo.get_all()

        self.assertEqual([p.id for p in products], ["sv151-bundle", "prismatic-evolutions-etb"])
        self.assertEqual(products[0].search.phrases, ("151 Bundle",))
        self.assertEqual(products[0].price.min, 60.0)
        # 未設定搜尋詞時使用商品名稱
        self.assertEqual(products[1].search.phrases, ("Prismatic Evolutions ETB",))
        self.assertIsNone(products[1].price.min)
        self.assertEqual(products[1].watchers, ())

    def test_plain_list_format(self):
        """測試直接為列表的格式"""
        self.write_watchlist([{"name": "151 Booster Bundle", "price": {"max": 150}}])
        products = FileWatchlistRepository(watchlist_path(self.temp_dir)).get_all()
        self.assertEqual(products[0].id, "151-booster-bundle")

    def test_get_by_id(self):
        self.write_watchlist([{"name": "151 Booster Bundle", "price": {"max": 150}}])
        repo = FileWatchlistRepository(watchlist_path(self.temp_dir))
        self.assertEqual(repo.get_by_id("151-booster-bundle").name, "151 Booster Bundle")
        self.assertIsNone(repo.get_by_id("missing"))

    def test_missing_price(self):
        """測試缺少價格設定"""
        self.write_watchlist([{"name": "151 Booster Bundle"}])
        with self.assertRaises(ValueError):
            FileWatchlistRepository(watchlist_path(self.temp_dir)).get_all()


class TestBundledConfig(unittest.TestCase):
    def test_example_config_loads(self):
        """測試專案內附的範例設定可以載入"""
        root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        config_dir = os.path.join(root, "config")
        shops = FileShopRepository(shops_dir(config_dir)).get_all()
        products = FileWatchlistRepository(watchlist_path(config_dir)).get_all()
        self.assertEqual({s.engine for s in shops}, {"static", "rendering"})
        self.assertEqual(len(products), 2)


if __name__ == "__main__":
    unittest.main()
