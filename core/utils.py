"""
文字、價格與 URL 處理工具
"""

import re
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote


def normalize_for_matching(text: str) -> str:
    """
    正規化文字以便比對

    - 轉小寫並去除前後空白
    - 各種破折號統一為連字號，再與冒號一起替換為空白
    - 合併連續空白
    """
    text = text.lower().strip()
    text = re.sub(r"[–—‐‑−]", "-", text)
    text = re.sub(r"[-:]+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


# 第一個數字：先嘗試含千分位分隔的寫法，否則為一般數字
EUROPEAN_PRICE_RE = re.compile(r"\d{1,3}(?:[ .]\d{3})+(?:,\d{1,2})?|\d+(?:,\d{1,2})?")
US_PRICE_RE = re.compile(r"\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?")


def parse_price(price_text: Optional[str], price_format: str = "european") -> Optional[float]:
    """
    解析價格文字

    只取文字中的第一個數字，其後的稅率、30 天最低價或原價等數字會被忽略。

    支援格式：
    - european: "1.234,56 zł", "129,99 €", "1 299,00"
    - us: "$1,234.56", "USD 19.99"

    Args:
        price_text: 價格文字
        price_format: "european" 或 "us"

    Returns:
        價格浮點數（非負），若解析失敗則返回 None
    """
    if not price_text:
        return None

    text = price_text.replace("\xa0", " ").strip()
    if price_format == "us":
        match = US_PRICE_RE.search(text)
        if not match:
            return None
        number = match.group(0).replace(",", "")
    else:
        match = EUROPEAN_PRICE_RE.search(text)
        if not match:
            return None
        number = re.sub(r"[ .]", "", match.group(0)).replace(",", ".")

    try:
        return float(number)
    except ValueError:
        return None


def normalize_url(url: str, base_url: str) -> str:
    """
    將相對、協定相對或絕對路徑轉換為完整 URL

    Args:
        url: 待處理的 URL
        base_url: 商店根網址（不含結尾斜線）
    """
    if url.startswith("http://") or url.startswith("https://"):
        return url
    if url.startswith("//"):
        return f"https:{url}"
    base_url = base_url.rstrip("/")
    if url.startswith("/"):
        return f"{base_url}{url}"
    return f"{base_url}/{url}"


def build_search_url(base_url: str, search_url: str, query: str) -> str:
    """
    依搜尋 URL 樣板組合搜尋網址

    樣板中的 {query} 會被替換為編碼後的搜尋詞；若無 {query} 則附加在結尾。
    """
    encoded = quote(query, safe="")
    if "{query}" in search_url:
        path = search_url.replace("{query}", encoded)
    else:
        path = f"{search_url}{encoded}"

    if path.startswith("http://") or path.startswith("https://"):
        return path
    return f"{base_url.rstrip('/')}{path}"


def to_utc(timestamp: datetime) -> datetime:
    """轉換為含時區的 UTC 時間，不含時區的時間視為 UTC"""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def get_hour_bucket(timestamp: datetime) -> str:
    """
    取得時間戳的小時區間鍵

    格式為 UTC 的 "YYYY-MM-DDTHH"，例如 "2026-01-26T14"。
    """
    return to_utc(timestamp).strftime("%Y-%m-%dT%H")
