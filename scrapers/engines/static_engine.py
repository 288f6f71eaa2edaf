"""
靜態 HTML 引擎

以 requests 取得頁面、BeautifulSoup 解析，不執行 JavaScript。
成本低、適合大量並行。
"""

import logging
import re
from typing import List, Optional

import requests
from bs4 import BeautifulSoup, NavigableString, Tag

from core.models import Selector, ShopConfig
from .base import Element, Engine

logger = logging.getLogger(__name__)


# 預設 HTTP 標頭（User-Agent 於每個引擎實例設定）
DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "pl-PL,pl;q=0.9,en-US;q=0.8,en;q=0.7",
    "Accept-Encoding": "gzip, deflate",
    "Upgrade-Insecure-Requests": "1",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

# 需要重試的 HTTP 狀態碼
RETRYABLE_STATUS = {403, 429}


def _clean_text(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    cleaned = re.sub(r"\s+", " ", text).strip()
    return cleaned or None


def find_by_text(root: Tag, value: str) -> List[Tag]:
    """
    找出文字內容包含 value 的最深層元素（不分大小寫）

    若子元素已包含該文字，則只返回子元素，不返回其祖先。
    """
    needle = value.lower()
    found = []
    for tag in root.find_all(True):
        if needle not in tag.get_text().lower():
            continue
        children = tag.find_all(True, recursive=False)
        if any(needle in child.get_text().lower() for child in children):
            continue
        found.append(tag)
    return found


def select_tags(root: Tag, selector_type: str, value: str) -> List[Tag]:
    """以單一選擇器值查詢 root 底下的元素"""
    if selector_type == "text":
        return find_by_text(root, value)
    if selector_type == "xpath":
        # BeautifulSoup 不支援 XPath，嘗試以 CSS 解讀
        logger.warning(f"XPath selector not supported by static engine, trying as CSS: {value}")
    return root.select(value)


def extract_from_tag(tag: Tag, selector: Selector) -> Optional[str]:
    """依選擇器的 attribute / extract 設定從元素取值"""
    if selector.attribute:
        value = tag.get(selector.attribute)
        if isinstance(value, list):
            value = " ".join(value)
        return value or None

    if selector.extract == "href":
        return tag.get("href") or None
    if selector.extract == "innerHTML":
        return tag.decode_contents() or None
    if selector.extract == "ownText":
        own = "".join(
            str(child) for child in tag.children if isinstance(child, NavigableString)
        )
        return _clean_text(own)
    return _clean_text(tag.get_text(" "))


def tag_matches(tag: Tag, selector: Selector) -> bool:
    for value in selector.values:
        if selector.type == "text":
            if value.lower() in tag.get_text().lower():
                return True
        elif tag.css.match(value):
            return True
    return False


class SoupElement(Element):
    """BeautifulSoup 元素包裝"""

    def __init__(self, tag: Tag, engine: Optional["StaticEngine"] = None):
        self.tag = tag
        self.engine = engine

    def _record_error(self, operation: str, selector_value: str, error: Exception) -> None:
        if self.engine is not None:
            self.engine._record_error(operation, selector_value, error)

    def get_text(self) -> Optional[str]:
        return _clean_text(self.tag.get_text(" "))

    def get_attribute(self, name: str) -> Optional[str]:
        value = self.tag.get(name)
        if isinstance(value, list):
            value = " ".join(value)
        return value or None

    def find(self, selector: Selector) -> Optional[Element]:
        if selector.match_self and self.matches(selector):
            return self
        for value in selector.values:
            try:
                tags = select_tags(self.tag, selector.type, value)
            except Exception as e:
                self._record_error("find", value, e)
                continue
            if tags:
                return SoupElement(tags[0], self.engine)
        return None

    def find_all(self, selector: Selector) -> List[Element]:
        for value in selector.values:
            try:
                tags = select_tags(self.tag, selector.type, value)
            except Exception as e:
                self._record_error("find_all", value, e)
                continue
            if tags:
                return [SoupElement(tag, self.engine) for tag in tags]
        return []

    def matches(self, selector: Selector) -> bool:
        try:
            return tag_matches(self.tag, selector)
        except Exception as e:
            self._record_error("matches", str(selector.value), e)
            return False


class StaticEngine(Engine):
    """
    靜態 HTML 引擎

    每個實例使用一個 requests.Session 與一個隨機 User-Agent。
    """

    kind = "static"

    def __init__(
        self,
        shop: ShopConfig,
        logger: Optional[logging.Logger] = None,
        request_timeout: float = 15.0,
        max_retry_attempts: int = 0,
        retry_delay_base: float = 2.0,
        session: Optional[requests.Session] = None,
    ):
        """
        初始化引擎

        Args:
            shop: 商店設定
            logger: 日誌記錄器
            request_timeout: HTTP 請求逾時（秒）
            max_retry_attempts: 最大重試次數
            retry_delay_base: 重試延遲基數（秒）
            session: 自訂 Session（主要用於測試）
        """
        super().__init__(
            shop,
            logger=logger,
            max_retry_attempts=max_retry_attempts,
            retry_delay_base=retry_delay_base,
        )
        self.request_timeout = request_timeout
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)
        self.session.headers["User-Agent"] = self._get_user_agent()

        self._soup: Optional[BeautifulSoup] = None
        self._current_url: Optional[str] = None

    def goto(self, url: str) -> None:
        """
        載入頁面

        Raises:
            requests.RequestException: 連線失敗或 HTTP 錯誤狀態時
        """
        self._soup = None
        self._current_url = None
        self._apply_jittered_delay()

        response = self._with_retry(lambda: self._fetch(url))
        self._soup = BeautifulSoup(response.text, "html.parser")
        # 記錄跟隨重新導向後的最終 URL
        self._current_url = response.url or url

    def _fetch(self, url: str) -> requests.Response:
        response = self.session.get(url, timeout=self.request_timeout, allow_redirects=True)
        response.raise_for_status()
        return response

    def _is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, (requests.ConnectionError, requests.Timeout)):
            return True
        if isinstance(error, requests.HTTPError) and error.response is not None:
            status = error.response.status_code
            return status in RETRYABLE_STATUS or 500 <= status < 600
        return False

    def get_current_url(self) -> Optional[str]:
        return self._current_url

    def _require_page(self, operation: str) -> Optional[BeautifulSoup]:
        if self._soup is None:
            self._record_error(operation, "", RuntimeError("No page loaded. Call goto() first."))
        return self._soup

    def extract(self, selector: Selector) -> Optional[str]:
        soup = self._require_page("extract")
        if soup is None:
            return None

        for value in selector.values:
            try:
                tags = select_tags(soup, selector.type, value)
                if not tags:
                    continue
                extracted = extract_from_tag(tags[0], selector)
            except Exception as e:
                self._record_error("extract", value, e)
                continue
            if extracted:
                return extracted
        return None

    def extract_all(self, selector: Selector) -> List[Element]:
        soup = self._require_page("extract_all")
        if soup is None:
            return []

        for value in selector.values:
            try:
                tags = select_tags(soup, selector.type, value)
            except Exception as e:
                self._record_error("extract_all", value, e)
                continue
            if tags:
                return [SoupElement(tag, self) for tag in tags]
        return []

    def exists(self, selector: Selector) -> bool:
        soup = self._require_page("exists")
        if soup is None:
            return False

        for value in selector.values:
            try:
                if select_tags(soup, selector.type, value):
                    return True
            except Exception as e:
                self._record_error("exists", value, e)
        return False

    def close(self) -> None:
        self._soup = None
        self._current_url = None
        self.session.close()
