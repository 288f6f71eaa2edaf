#!/usr/bin/env python3
"""
測試 NotificationStateMachine
"""
import threading
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

import helpers  # noqa: F401

from core.models import NotificationState, ProductResult
from core.notification_state import NotificationStateMachine


def observation(price, available=True, product_id="p1", shop_id="s1"):
    return ProductResult(
        product_id=product_id,
        shop_id=shop_id,
        product_url="https://shop.example.com/p1",
        price=price,
        is_available=available,
    )


class TestStateTransitions(unittest.TestCase):
    def setUp(self):
        self.repo = MagicMock()
        self.machine = NotificationStateMachine(self.repo)

    def test_new_key_is_armed(self):
        """測試沒有狀態紀錄時應通知"""
        self.assertTrue(self.machine.should_notify("p1", "s1"))

    def test_mark_notified_fires(self):
        """測試標記後不再通知並記錄價格與供貨"""
        self.machine.mark_notified(observation(150))
        self.assertFalse(self.machine.should_notify("p1", "s1"))

        state = self.machine.get_state("p1", "s1")
        self.assertEqual(state.last_price, 150)
        self.assertTrue(state.was_available)
        self.assertIsNotNone(state.last_notified)

    def test_keys_are_independent(self):
        """測試不同商店的狀態互不影響"""
        self.machine.mark_notified(observation(150, shop_id="s1"))
        self.assertTrue(self.machine.should_notify("p1", "s2"))

    def test_reset_on_unavailability(self):
        """測試已通知後缺貨會重置"""
        self.machine.mark_notified(observation(150))
        self.assertTrue(self.machine.update_tracked_state(observation(None, available=False)))
        self.assertTrue(self.machine.should_notify("p1", "s1"))

    def test_reset_on_price_increase(self):
        """測試已通知後漲價會重置"""
        self.machine.mark_notified(observation(150))
        self.assertTrue(self.machine.update_tracked_state(observation(160)))
        self.assertTrue(self.machine.should_notify("p1", "s1"))

    def test_price_decrease_keeps_fired(self):
        """測試降價不會重置"""
        self.machine.mark_notified(observation(150))
        self.assertFalse(self.machine.update_tracked_state(observation(140)))
        self.assertFalse(self.machine.should_notify("p1", "s1"))

    def test_same_observation_keeps_fired(self):
        """測試相同觀測值不會重置"""
        self.machine.mark_notified(observation(150))
        for _ in range(3):
            self.assertFalse(self.machine.update_tracked_state(observation(150)))
        self.assertFalse(self.machine.should_notify("p1", "s1"))

    def test_missing_price_does_not_reset(self):
        """測試價格缺失（仍有貨）不會重置"""
        self.machine.mark_notified(observation(150))
        self.assertFalse(self.machine.update_tracked_state(observation(None)))
        self.assertFalse(self.machine.should_notify("p1", "s1"))

    def test_update_without_state_is_noop(self):
        """測試沒有狀態時更新不做任何事"""
        self.assertFalse(self.machine.update_tracked_state(observation(999, available=False)))
        self.assertEqual(self.machine.pending_count(), 0)

    def test_fire_reset_fire_sequence(self):
        """測試 150 通知 -> 160 重置 -> 145 可再次通知"""
        self.machine.mark_notified(observation(150))
        self.machine.update_tracked_state(observation(160))
        self.machine.update_tracked_state(observation(145))
        self.assertTrue(self.machine.should_notify("p1", "s1"))
        self.machine.mark_notified(observation(145))
        self.assertEqual(self.machine.get_state("p1", "s1").last_price, 145)


class TestFlushAndLoad(unittest.TestCase):
    def test_flush_sends_upserts_and_deletes(self):
        """測試 flush 批次寫入新增與刪除"""
        repo = MagicMock()
        machine = NotificationStateMachine(repo)
        machine.mark_notified(observation(150, product_id="p1"))
        machine.mark_notified(observation(100, product_id="p2"))
        machine.update_tracked_state(observation(120, product_id="p2"))

        self.assertEqual(machine.flush_changes(), 2)
        upserts = repo.set_batch.call_args[0][0]
        self.assertEqual([s.key for s in upserts], ["p1:s1"])
        repo.delete_batch.assert_called_once_with(["p2:s1"])
        self.assertEqual(machine.pending_count(), 0)

    def test_mark_after_reset_cancels_delete(self):
        """測試重置後再次通知只保留新增"""
        repo = MagicMock()
        machine = NotificationStateMachine(repo)
        machine.mark_notified(observation(150))
        machine.update_tracked_state(observation(None, available=False))
        machine.mark_notified(observation(140))

        machine.flush_changes()
        repo.delete_batch.assert_not_called()
        self.assertEqual(repo.set_batch.call_args[0][0][0].last_price, 140)

    def test_flush_nothing_pending(self):
        """測試沒有變更時不呼叫儲存"""
        repo = MagicMock()
        self.assertEqual(NotificationStateMachine(repo).flush_changes(), 0)
        repo.set_batch.assert_not_called()
        repo.delete_batch.assert_not_called()

    def test_flush_failure_keeps_pending(self):
        """測試寫入失敗時保留未寫入的變更"""
        repo = MagicMock()
        repo.set_batch.side_effect = RuntimeError("db down")
        machine = NotificationStateMachine(repo)
        machine.mark_notified(observation(150))

        with self.assertRaises(RuntimeError):
            machine.flush_changes()
        self.assertEqual(machine.pending_count(), 1)

        repo.set_batch.side_effect = None
        self.assertEqual(machine.flush_changes(), 1)

    def test_load_from_repository(self):
        """測試從儲存載入狀態"""
        repo = MagicMock()
        repo.get_all.return_value = [
            NotificationState(
                product_id="p1",
                shop_id="s1",
                last_notified=datetime(2026, 1, 1, tzinfo=timezone.utc),
                last_price=150,
                was_available=True,
            ),
            NotificationState(product_id="p2", shop_id="s1"),
        ]
        machine = NotificationStateMachine(repo)
        self.assertEqual(machine.load_from_repository(["p1", "p2"]), 2)
        repo.get_all.assert_called_once_with(["p1", "p2"])

        self.assertFalse(machine.should_notify("p1", "s1"))
        # 沒有 last_notified 的紀錄視為 armed
        self.assertTrue(machine.should_notify("p2", "s1"))

    def test_without_repository(self):
        """測試沒有儲存時只在記憶體運作"""
        machine = NotificationStateMachine()
        self.assertEqual(machine.load_from_repository(), 0)
        machine.mark_notified(observation(150))
        self.assertEqual(machine.flush_changes(), 0)
        self.assertFalse(machine.should_notify("p1", "s1"))


class TestKeyLock(unittest.TestCase):
    def test_same_key_shares_lock(self):
        """測試同一個 key 的操作互斥"""
        machine = NotificationStateMachine()
        entered = threading.Event()
        release = threading.Event()
        order = []

        def holder():
            with machine.key_lock("p1", "s1"):
                order.append("holder")
                entered.set()
                release.wait(timeout=5)

        def waiter():
            entered.wait(timeout=5)
            with machine.key_lock("p1", "s1"):
                order.append("waiter")

        t1 = threading.Thread(target=holder)
        t2 = threading.Thread(target=waiter)
        t1.start()
        t2.start()
        entered.wait(timeout=5)
        self.assertEqual(order, ["holder"])
        release.set()
        t1.join(timeout=5)
        t2.join(timeout=5)
        self.assertEqual(order, ["holder", "waiter"])

    def test_different_keys_do_not_block(self):
        """測試不同 key 不互相阻塞"""
        machine = NotificationStateMachine()
        with machine.key_lock("p1", "s1"):
            acquired = threading.Event()

            def other():
                with machine.key_lock("p1", "s2"):
                    acquired.set()

            t = threading.Thread(target=other)
            t.start()
            self.assertTrue(acquired.wait(timeout=5))
            t.join(timeout=5)


if __name__ == "__main__":
    unittest.main()
