"""
抓取引擎基礎類別模組

定義兩種引擎（靜態 HTML 解析、瀏覽器渲染）共用的介面和行為，包括：
- 頁面導覽與查詢介面 (goto, extract, extract_all, exists, get_current_url, close)
- 元素包裝介面 (get_text, get_attribute, find, find_all, matches)
- User-Agent 輪換
- 請求前的隨機延遲與重試退避
"""

import logging
import random
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, TypeVar

from core.models import Selector, ShopConfig

T = TypeVar("T")


# 預設 User-Agent 列表，用於輪換以避免被封鎖
DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:133.0) Gecko/20100101 Firefox/133.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
]

# 請求前隨機延遲的浮動比例（±30%）
DELAY_JITTER_RATIO = 0.3


class Element(ABC):
    """
    頁面元素包裝

    所有方法在失敗時返回 None / 空列表 / False，不拋出例外。
    """

    @abstractmethod
    def get_text(self) -> Optional[str]:
        pass

    @abstractmethod
    def get_attribute(self, name: str) -> Optional[str]:
        pass

    @abstractmethod
    def find(self, selector: Selector) -> Optional["Element"]:
        pass

    @abstractmethod
    def find_all(self, selector: Selector) -> List["Element"]:
        pass

    @abstractmethod
    def matches(self, selector: Selector) -> bool:
        """判斷元素本身（而非子孫元素）是否符合選擇器"""
        pass


class Engine(ABC):
    """
    抓取引擎

    goto 在傳輸層失敗時拋出例外；查詢方法一律 fail soft，
    失敗時返回 None，最後一次吞下的例外保存在 last_error。
    """

    # 子類別覆寫，例如 'static', 'rendering'
    kind = ""

    def __init__(
        self,
        shop: ShopConfig,
        logger: Optional[logging.Logger] = None,
        max_retry_attempts: int = 0,
        retry_delay_base: float = 2.0,
        user_agents: Optional[List[str]] = None,
    ):
        """
        初始化引擎

        Args:
            shop: 商店設定
            logger: 日誌記錄器，若為 None 則使用模組 logger
            max_retry_attempts: 導覽失敗時的最大重試次數（0 表示不重試）
            retry_delay_base: 重試延遲基數（秒）
            user_agents: 自訂 User-Agent 列表
        """
        self.shop = shop
        self.logger = logger or logging.getLogger(__name__)
        self.max_retry_attempts = max_retry_attempts
        self.retry_delay_base = retry_delay_base
        self.user_agents = user_agents or DEFAULT_USER_AGENTS.copy()
        self.last_error: Optional[BaseException] = None
        self._current_user_agent: Optional[str] = None

    @abstractmethod
    def goto(self, url: str) -> None:
        pass

    @abstractmethod
    def get_current_url(self) -> Optional[str]:
        pass

    @abstractmethod
    def extract(self, selector: Selector) -> Optional[str]:
        """依序嘗試備用選擇器，返回第一個非空的擷取值"""
        pass

    @abstractmethod
    def extract_all(self, selector: Selector) -> List[Element]:
        pass

    @abstractmethod
    def exists(self, selector: Selector) -> bool:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def _get_user_agent(self) -> str:
        """隨機選擇一個 User-Agent"""
        self._current_user_agent = random.choice(self.user_agents)
        return self._current_user_agent

    def _record_error(self, operation: str, selector_value: str, error: BaseException) -> None:
        """記錄被吞下的查詢錯誤"""
        self.last_error = error
        self.logger.debug(
            f"{type(self).__name__}.{operation} failed for shop {self.shop.id} "
            f"(selector {selector_value!r}): {error}"
        )

    def _apply_jittered_delay(self) -> None:
        """依商店設定在請求前等待（±30% 浮動）"""
        base_ms = self.shop.anti_bot.request_delay_ms
        if base_ms <= 0:
            return
        jitter = base_ms * DELAY_JITTER_RATIO
        delay_ms = base_ms + random.uniform(-jitter, jitter)
        time.sleep(delay_ms / 1000)

    def _calculate_retry_delay(self, attempt: int) -> float:
        """
        計算重試延遲時間

        Args:
            attempt: 當前重試次數（從 0 開始）

        Returns:
            延遲秒數
        """
        base_delay = self.retry_delay_base * (attempt + 1)
        jitter = random.uniform(0, base_delay * 0.5)
        return base_delay + jitter

    def _is_retryable(self, error: BaseException) -> bool:
        """子類別可覆寫以限制哪些錯誤需要重試"""
        return True

    def _with_retry(self, fn: Callable[[], T]) -> T:
        """執行導覽，失敗時依 max_retry_attempts 重試"""
        max_attempts = 1 + max(0, self.max_retry_attempts)
        for attempt in range(max_attempts):
            try:
                return fn()
            except Exception as e:
                if attempt >= max_attempts - 1 or not self._is_retryable(e):
                    raise
                wait_time = self._calculate_retry_delay(attempt)
                self.logger.warning(
                    f"Navigation failed for shop {self.shop.id} "
                    f"(attempt {attempt + 1}/{max_attempts}), retrying in {wait_time:.1f}s: {e}"
                )
                time.sleep(wait_time)
        raise RuntimeError("unreachable")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
