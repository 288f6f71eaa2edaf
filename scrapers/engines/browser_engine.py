"""
瀏覽器渲染引擎

使用 Playwright 操作真實瀏覽器，可取得 JavaScript 渲染後的內容。
可借用呼叫者提供的瀏覽器（只建立自己的 context 與 page），
否則在第一次導覽時自行啟動並擁有一個瀏覽器。
"""

import logging
from typing import List, Optional

from playwright.sync_api import (
    Browser,
    BrowserContext,
    Locator,
    Page,
    Playwright,
    Route,
    sync_playwright,
)

from core.models import Selector, ShopConfig
from .base import Element, Engine


# 攔截以節省頻寬與 CPU 的資源類型
BLOCKED_RESOURCE_TYPES = {"image", "stylesheet", "font", "media"}

# 分析與客服套件網域
BLOCKED_DOMAINS = [
    "google-analytics.com",
    "googletagmanager.com",
    "facebook.net",
    "doubleclick.net",
    "hotjar.com",
    "clarity.ms",
    "crisp.chat",
    "tawk.to",
    "intercom.io",
    "zendesk.com",
    "livechatinc.com",
]

# 反爬蟲挑戰頁標題（會在數秒後自動重新載入）
CHALLENGE_TITLES = ["one moment, please", "just a moment"]
CHALLENGE_TIMEOUT_MS = 15000

# 自行啟動瀏覽器時使用的參數
BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

OWN_TEXT_SCRIPT = """
el => Array.from(el.childNodes)
    .filter(n => n.nodeType === Node.TEXT_NODE)
    .map(n => n.textContent)
    .join('')
"""

CSS_MATCH_SCRIPT = "(el, sel) => el.matches(sel)"

XPATH_MATCH_SCRIPT = """
(el, xp) => {
    const r = document.evaluate(xp, document, null, XPathResult.ORDERED_NODE_SNAPSHOT_TYPE, null);
    for (let i = 0; i < r.snapshotLength; i++) {
        if (r.snapshotItem(i) === el) return true;
    }
    return false;
}
"""


def _clean_text(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return " ".join(text.split()) or None


def create_locator(root, selector_type: str, value: str) -> Locator:
    """在 page 或 locator 底下建立 Locator"""
    if selector_type == "css":
        return root.locator(value)
    if selector_type == "xpath":
        return root.locator(f"xpath={value}")
    if selector_type == "text":
        # Playwright 的 text= 為不分大小寫的子字串比對
        return root.locator(f"text={value}")
    raise ValueError(f"Unknown selector type: {selector_type}")


def extract_from_locator(locator: Locator, selector: Selector) -> Optional[str]:
    if selector.attribute:
        return locator.get_attribute(selector.attribute) or None
    if selector.extract == "href":
        return locator.get_attribute("href") or None
    if selector.extract == "innerHTML":
        return locator.inner_html() or None
    if selector.extract == "ownText":
        return _clean_text(locator.evaluate(OWN_TEXT_SCRIPT))
    return _clean_text(locator.text_content())


class LocatorElement(Element):
    """Playwright Locator 包裝"""

    def __init__(self, locator: Locator, engine: Optional["BrowserEngine"] = None):
        self.locator = locator
        self.engine = engine

    def _record_error(self, operation: str, selector_value: str, error: Exception) -> None:
        if self.engine is not None:
            self.engine._record_error(operation, selector_value, error)

    def get_text(self) -> Optional[str]:
        try:
            return _clean_text(self.locator.text_content())
        except Exception as e:
            self._record_error("get_text", "", e)
            return None

    def get_attribute(self, name: str) -> Optional[str]:
        try:
            return self.locator.get_attribute(name) or None
        except Exception as e:
            self._record_error("get_attribute", name, e)
            return None

    def find(self, selector: Selector) -> Optional[Element]:
        if selector.match_self and self.matches(selector):
            return self
        for value in selector.values:
            try:
                locator = create_locator(self.locator, selector.type, value)
                if locator.count() > 0:
                    return LocatorElement(locator.first, self.engine)
            except Exception as e:
                self._record_error("find", value, e)
        return None

    def find_all(self, selector: Selector) -> List[Element]:
        for value in selector.values:
            try:
                locator = create_locator(self.locator, selector.type, value)
                count = locator.count()
                if count > 0:
                    return [LocatorElement(locator.nth(i), self.engine) for i in range(count)]
            except Exception as e:
                self._record_error("find_all", value, e)
        return []

    def matches(self, selector: Selector) -> bool:
        for value in selector.values:
            try:
                if selector.type == "css":
                    matched = self.locator.evaluate(CSS_MATCH_SCRIPT, value)
                elif selector.type == "xpath":
                    matched = self.locator.evaluate(XPATH_MATCH_SCRIPT, value)
                else:
                    text = self.locator.text_content() or ""
                    matched = value.lower() in text.lower()
            except Exception as e:
                self._record_error("matches", value, e)
                continue
            if matched:
                return True
        return False


class BrowserEngine(Engine):
    """
    瀏覽器渲染引擎

    close() 只釋放自己建立的資源，借用的瀏覽器保持開啟由呼叫者負責關閉。
    """

    kind = "rendering"

    def __init__(
        self,
        shop: ShopConfig,
        browser: Optional[Browser] = None,
        logger: Optional[logging.Logger] = None,
        headless: bool = True,
        navigation_timeout_ms: int = 10000,
        action_timeout_ms: int = 500,
        settle_delay_ms: int = 100,
        max_retry_attempts: int = 0,
        retry_delay_base: float = 2.0,
    ):
        """
        初始化引擎

        Args:
            shop: 商店設定
            browser: 借用的瀏覽器實例，None 表示需要時自行啟動
            logger: 日誌記錄器
            headless: 自行啟動瀏覽器時是否使用無頭模式
            navigation_timeout_ms: 導覽逾時（毫秒）
            action_timeout_ms: 查詢動作逾時（毫秒）
            settle_delay_ms: 載入後等待動態內容的時間（毫秒）
            max_retry_attempts: 最大重試次數
            retry_delay_base: 重試延遲基數（秒）
        """
        super().__init__(
            shop,
            logger=logger,
            max_retry_attempts=max_retry_attempts,
            retry_delay_base=retry_delay_base,
        )
        self.headless = headless
        self.navigation_timeout_ms = navigation_timeout_ms
        self.action_timeout_ms = action_timeout_ms
        self.settle_delay_ms = settle_delay_ms

        self._borrowed_browser = browser
        self._owns_browser = False

        # 瀏覽器相關實例（延遲初始化）
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    @property
    def page(self) -> Optional[Page]:
        return self._page

    @property
    def owns_browser(self) -> bool:
        return self._owns_browser

    def _init_page(self) -> None:
        """
        建立頁面

        有借用的瀏覽器時只建立新的 context；否則啟動 Playwright 與 Chromium。

        Raises:
            RuntimeError: 借用的瀏覽器已關閉時
        """
        if self._borrowed_browser is not None:
            if not self._borrowed_browser.is_connected():
                raise RuntimeError("Shared browser is already closed")
            self._browser = self._borrowed_browser
            self._owns_browser = False
        else:
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(
                headless=self.headless, args=BROWSER_ARGS
            )
            self._owns_browser = True

        self._context = self._browser.new_context(user_agent=self._get_user_agent())
        self._page = self._context.new_page()
        self._page.set_default_timeout(self.action_timeout_ms)
        self._page.set_default_navigation_timeout(self.navigation_timeout_ms)
        self._page.route("**/*", self._handle_route)

    def _handle_route(self, route: Route) -> None:
        """攔截圖片、樣式、字型、媒體與追蹤網域的請求"""
        request = route.request
        if request.resource_type in BLOCKED_RESOURCE_TYPES:
            route.abort()
            return
        if any(domain in request.url for domain in BLOCKED_DOMAINS):
            route.abort()
            return
        route.continue_()

    def goto(self, url: str) -> None:
        if self._page is None:
            self._init_page()

        self._apply_jittered_delay()
        self._with_retry(
            lambda: self._page.goto(
                url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms
            )
        )

        # 等待動態內容
        self._page.wait_for_timeout(self.settle_delay_ms)
        self._wait_for_challenge_if_needed()

    def _wait_for_challenge_if_needed(self) -> None:
        """偵測反爬蟲挑戰頁並等待其自動重新載入"""
        title = (self._page.title() or "").lower()
        if not any(challenge in title for challenge in CHALLENGE_TITLES):
            return

        self.logger.debug(f"Challenge page detected for shop {self.shop.id}: {title}")
        self._page.wait_for_event("load", timeout=CHALLENGE_TIMEOUT_MS)
        self._page.wait_for_load_state("domcontentloaded")

    def get_current_url(self) -> Optional[str]:
        if self._page is None:
            return None
        try:
            return self._page.url or None
        except Exception as e:
            self._record_error("get_current_url", "", e)
            return None

    def _require_page(self, operation: str) -> Optional[Page]:
        if self._page is None:
            self._record_error(operation, "", RuntimeError("No page loaded. Call goto() first."))
        return self._page

    def extract(self, selector: Selector) -> Optional[str]:
        page = self._require_page("extract")
        if page is None:
            return None

        for value in selector.values:
            try:
                locator = create_locator(page, selector.type, value)
                if locator.count() == 0:
                    continue
                extracted = extract_from_locator(locator.first, selector)
            except Exception as e:
                self._record_error("extract", value, e)
                continue
            if extracted:
                return extracted
        return None

    def extract_all(self, selector: Selector) -> List[Element]:
        page = self._require_page("extract_all")
        if page is None:
            return []

        for value in selector.values:
            try:
                locator = create_locator(page, selector.type, value)
                count = locator.count()
            except Exception as e:
                self._record_error("extract_all", value, e)
                continue
            if count > 0:
                return [LocatorElement(locator.nth(i), self) for i in range(count)]
        return []

    def exists(self, selector: Selector) -> bool:
        page = self._require_page("exists")
        if page is None:
            return False

        for value in selector.values:
            try:
                if create_locator(page, selector.type, value).count() > 0:
                    return True
            except Exception as e:
                self._record_error("exists", value, e)
        return False

    def _safe_close(self, resource, name: str) -> None:
        try:
            resource.close()
        except Exception as e:
            self.logger.debug(f"Failed to close {name} for shop {self.shop.id}: {e}")

    def close(self) -> None:
        """
        關閉引擎

        依序關閉頁面與 context；只有自行啟動的瀏覽器與 Playwright 才會關閉。
        """
        if self._page:
            self._safe_close(self._page, "page")
            self._page = None

        if self._context:
            self._safe_close(self._context, "context")
            self._context = None

        if self._owns_browser:
            if self._browser:
                self._safe_close(self._browser, "browser")
            if self._playwright:
                try:
                    self._playwright.stop()
                except Exception as e:
                    self.logger.debug(f"Failed to stop playwright for shop {self.shop.id}: {e}")
                self._playwright = None
            self._owns_browser = False
        self._browser = None
