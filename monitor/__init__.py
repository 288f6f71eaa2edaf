# Monitor module - scan cycle orchestration

from .scan_cycle import ScanCycleRunner, CycleStats, is_alert_eligible
from .price_monitor import PriceMonitor, ScanSummary

__all__ = [
    'ScanCycleRunner',
    'CycleStats',
    'is_alert_eligible',
    'PriceMonitor',
    'ScanSummary',
]
