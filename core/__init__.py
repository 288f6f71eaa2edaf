# Core module - shared components for the scan pipeline
# Contains: models, config, storage, result buffer, notification state, dispatchers

from .models import (
    Selector,
    ShopConfig,
    WatchlistProduct,
    ProductResult,
    Candidate,
    SearchHit,
    NotificationState,
    state_key,
    null_result,
)
from .config import (
    MonitorSettings,
    FileShopRepository,
    FileWatchlistRepository,
    setup_logging,
)
from .interfaces import (
    ShopRepository,
    WatchlistRepository,
    ProductResultRepository,
    NotificationStateRepository,
    AlertDispatcher,
)
from .storage import (
    SQLiteStorage,
    SQLiteProductResultRepository,
    SQLiteNotificationStateRepository,
    SQLiteAlertOutbox,
)
from .result_buffer import ResultBuffer
from .notification_state import NotificationStateMachine
from .dispatcher import OutboxAlertDispatcher, DryRunAlertDispatcher

__all__ = [
    'Selector',
    'ShopConfig',
    'WatchlistProduct',
    'ProductResult',
    'Candidate',
    'SearchHit',
    'NotificationState',
    'state_key',
    'null_result',
    'MonitorSettings',
    'FileShopRepository',
    'FileWatchlistRepository',
    'setup_logging',
    'ShopRepository',
    'WatchlistRepository',
    'ProductResultRepository',
    'NotificationStateRepository',
    'AlertDispatcher',
    'SQLiteStorage',
    'SQLiteProductResultRepository',
    'SQLiteNotificationStateRepository',
    'SQLiteAlertOutbox',
    'ResultBuffer',
    'NotificationStateMachine',
    'OutboxAlertDispatcher',
    'DryRunAlertDispatcher',
]
