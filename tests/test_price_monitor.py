#!/usr/bin/env python3
"""
測試 PriceMonitor 主流程
"""
import unittest
from unittest.mock import MagicMock

from helpers import make_product, make_shop

from core.models import ProductResult
from core.notification_state import NotificationStateMachine
from monitor.price_monitor import PriceMonitor
from monitor.scan_cycle import CycleStats


class PriceMonitorTestCase(unittest.TestCase):
    def setUp(self):
        self.shop_repo = MagicMock()
        self.shop_repo.get_enabled.return_value = [
            make_shop(id="static-shop"),
            make_shop(id="spa-shop", engine="rendering"),
        ]
        self.watchlist_repo = MagicMock()
        self.watchlist_repo.get_all.return_value = [
            make_product(name="Product A"),
            make_product(name="Product B"),
        ]
        self.result_repo = MagicMock()
        self.state_repo = MagicMock()
        self.state_repo.get_all.return_value = []
        self.state_machine = NotificationStateMachine(self.state_repo)
        self.runner = MagicMock()
        self.runner.run_static_cycle.return_value = CycleStats(engine="static", shops=1, scanned=2, alerts=1)
        self.runner.run_rendering_cycle.return_value = CycleStats(engine="rendering", shops=1, scanned=1, failed=1)

    def make_monitor(self, load_state=True):
        return PriceMonitor(
            self.shop_repo,
            self.watchlist_repo,
            self.result_repo,
            scraper_factory=MagicMock(),
            state_machine=self.state_machine,
            dispatcher=MagicMock(),
            load_state=load_state,
            runner=self.runner,
        )


class TestInitialize(PriceMonitorTestCase):
    def test_loads_shops_products_and_state(self):
        """測試初始化載入設定與通知狀態"""
        monitor = self.make_monitor()
        monitor.initialize()
        self.assertEqual(len(monitor.shops), 2)
        self.assertEqual([p.id for p in monitor.products], ["product-a", "product-b"])
        self.state_repo.get_all.assert_called_once_with(["product-a", "product-b"])

    def test_skip_state_loading(self):
        """測試不載入通知狀態"""
        self.make_monitor(load_state=False).initialize()
        self.state_repo.get_all.assert_not_called()

    def test_no_shops(self):
        """測試沒有商店設定時拋出錯誤"""
        self.shop_repo.get_enabled.return_value = []
        with self.assertRaises(ValueError) as ctx:
            self.make_monitor().initialize()
        self.assertIn("No shop configurations found", str(ctx.exception))

    def test_no_products(self):
        """測試追蹤清單為空時拋出錯誤"""
        self.watchlist_repo.get_all.return_value = []
        with self.assertRaises(ValueError) as ctx:
            self.make_monitor().initialize()
        self.assertIn("No products in watchlist", str(ctx.exception))


class TestFullScanCycle(PriceMonitorTestCase):
    def _buffer_one_result(self, monitor):
        def static_cycle(shops, products):
            monitor.result_buffer.add(ProductResult("product-a", "static-shop", "https://x/p", 99.0, True))
            return self.runner.run_static_cycle.return_value

        self.runner.run_static_cycle.side_effect = static_cycle

    def test_runs_both_cycles_and_flushes(self):
        """測試依序執行兩種週期並寫入結果"""
        monitor = self.make_monitor()
        monitor.initialize()
        self._buffer_one_result(monitor)

        summary = monitor.run_full_scan_cycle()

        self.runner.run_static_cycle.assert_called_once_with(monitor.shops, monitor.products)
        self.runner.run_rendering_cycle.assert_called_once_with(monitor.shops, monitor.products)
        self.result_repo.upsert_hourly_batch.assert_called_once()
        self.assertEqual(summary.results_flushed, 1)
        self.assertEqual(summary.scanned, 3)
        self.assertEqual(summary.failed, 1)
        self.assertEqual(summary.alerts, 1)
        self.assertIs(monitor.last_summary, summary)
        self.assertEqual(summary.to_dict()["static"]["scanned"], 2)

    def test_static_only(self):
        """測試只執行靜態週期"""
        monitor = self.make_monitor()
        monitor.initialize()
        summary = monitor.run_full_scan_cycle(run_rendering=False)
        self.runner.run_rendering_cycle.assert_not_called()
        self.assertEqual(summary.rendering.scanned, 0)

    def test_rendering_failure_still_flushes_then_raises(self):
        """測試渲染週期中止時仍寫入已取得的結果，再拋出錯誤"""
        self.runner.run_rendering_cycle.side_effect = RuntimeError("browser launch failed")
        monitor = self.make_monitor()
        monitor.initialize()
        self._buffer_one_result(monitor)
        monitor.state_machine.mark_notified(ProductResult("product-a", "static-shop", "https://x/p", 99.0, True))

        with self.assertRaises(RuntimeError):
            monitor.run_full_scan_cycle()

        self.result_repo.upsert_hourly_batch.assert_called_once()
        self.state_repo.set_batch.assert_called_once()
        self.assertEqual(monitor.last_summary.rendering_error, "browser launch failed")

    def test_result_flush_failure_still_flushes_state(self):
        """測試結果寫入失敗時仍寫入通知狀態"""
        self.result_repo.upsert_hourly_batch.side_effect = RuntimeError("db locked")
        monitor = self.make_monitor()
        monitor.initialize()
        self._buffer_one_result(monitor)
        monitor.state_machine.mark_notified(ProductResult("product-a", "static-shop", "https://x/p", 99.0, True))

        with self.assertRaises(RuntimeError):
            monitor.run_full_scan_cycle()
        self.state_repo.set_batch.assert_called_once()
        self.assertEqual(monitor.result_buffer.size(), 1)

    def test_without_initialize_skips(self):
        """測試未初始化（沒有商品）時跳過週期"""
        summary = self.make_monitor().run_full_scan_cycle()
        self.runner.run_static_cycle.assert_not_called()
        self.assertEqual(summary.scanned, 0)


if __name__ == "__main__":
    unittest.main()
