#!/usr/bin/env python3
"""
寶可夢卡牌商品價格監控主程式

每次執行一個完整掃描週期，由外部排程（cron 等）觸發。
"""
import argparse
import dataclasses
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from core.config import (
    FileShopRepository,
    FileWatchlistRepository,
    MonitorSettings,
    setup_logging,
    shops_dir,
    watchlist_path,
)
from core.dispatcher import DryRunAlertDispatcher, OutboxAlertDispatcher
from core.notification_state import NotificationStateMachine
from core.storage import (
    SQLiteAlertOutbox,
    SQLiteNotificationStateRepository,
    SQLiteProductResultRepository,
    SQLiteStorage,
)
from monitor.price_monitor import PriceMonitor, ScanSummary
from scrapers.factory import ScraperFactory

# 載入 .env 檔案
load_dotenv()

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="寶可夢卡牌商品價格監控（執行一次完整掃描週期）",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
範例:
  %(prog)s                        # 執行靜態與渲染兩個週期
  %(prog)s --dry-run              # 測試模式（不寫入通知、不標記狀態）
  %(prog)s --static-only          # 只執行靜態週期
  %(prog)s --rendering-only --headed   # 只執行渲染週期並顯示瀏覽器
  %(prog)s --config-dir ./config --db data/monitor.db
        """
    )

    cycle_group = parser.add_mutually_exclusive_group()
    cycle_group.add_argument(
        "--static-only",
        action="store_true",
        help="只執行靜態 HTML 週期"
    )
    cycle_group.add_argument(
        "--rendering-only",
        action="store_true",
        help="只執行瀏覽器渲染週期"
    )
    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="測試模式，只記錄通知不寫入"
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        help="以有頭模式運行瀏覽器（用於除錯）"
    )
    parser.add_argument(
        "--no-state",
        action="store_true",
        help="不載入先前的通知狀態"
    )
    parser.add_argument(
        "--config-dir",
        type=str,
        default=None,
        help="設定檔目錄（包含 shops/ 與 watchlist.json）"
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="SQLite 資料庫路徑"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="日誌等級"
    )
    return parser


def apply_cli_overrides(settings: MonitorSettings, args: argparse.Namespace) -> MonitorSettings:
    """以命令列參數覆寫環境變數設定"""
    overrides = {}
    if args.headed:
        overrides["headless"] = False
    if args.config_dir:
        overrides["config_dir"] = args.config_dir
    if args.db:
        overrides["db_path"] = args.db
    if args.log_level:
        overrides["log_level"] = args.log_level
    return dataclasses.replace(settings, **overrides) if overrides else settings


def build_monitor(settings: MonitorSettings, dry_run: bool = False, load_state: bool = True) -> PriceMonitor:
    """組裝 PriceMonitor 與其協作元件"""
    storage = SQLiteStorage(db_path=settings.db_path)

    if dry_run:
        dispatcher = DryRunAlertDispatcher()
    else:
        dispatcher = OutboxAlertDispatcher(SQLiteAlertOutbox(storage))

    return PriceMonitor(
        shop_repository=FileShopRepository(shops_dir(settings.config_dir)),
        watchlist_repository=FileWatchlistRepository(watchlist_path(settings.config_dir)),
        product_result_repository=SQLiteProductResultRepository(storage),
        scraper_factory=ScraperFactory(settings),
        state_machine=NotificationStateMachine(SQLiteNotificationStateRepository(storage)),
        dispatcher=dispatcher,
        settings=settings,
        load_state=load_state,
    )


def print_summary(summary: ScanSummary) -> None:
    print(f"\n{'='*60}")
    print("Scan summary")
    print(f"{'='*60}")
    for stats in (summary.static, summary.rendering):
        print(
            f"  {stats.engine:<10} shops={stats.shops} scanned={stats.scanned} "
            f"failed={stats.failed} alerts={stats.alerts} ({stats.duration_seconds:.1f}s)"
        )
    print(f"  Results flushed: {summary.results_flushed}")
    print(f"  State changes flushed: {summary.state_changes_flushed}")
    print(f"  Total duration: {summary.duration_seconds:.1f}s")
    if summary.rendering_error:
        print(f"  Rendering cycle error: {summary.rendering_error}")


def main(argv: Optional[List[str]] = None) -> int:
    """主程式"""
    args = build_parser().parse_args(argv)

    try:
        settings = apply_cli_overrides(MonitorSettings.from_env(), args)
    except ValueError as e:
        print(f"Invalid settings: {e}")
        return 1

    setup_logging(settings.log_level)

    if args.dry_run:
        logger.info("Mode: DRY RUN (no alerts queued)")

    try:
        monitor = build_monitor(settings, dry_run=args.dry_run, load_state=not args.no_state)
        monitor.initialize()
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Error loading configuration: {e}")
        return 1

    try:
        summary = monitor.run_full_scan_cycle(
            run_static=not args.rendering_only,
            run_rendering=not args.static_only,
        )
    except Exception as e:
        logger.error(f"Scan cycle failed: {e}", exc_info=True)
        if monitor.last_summary:
            print_summary(monitor.last_summary)
        return 1

    print_summary(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
