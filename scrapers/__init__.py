# Scrapers module - engines, matching, search navigation and per-shop scraping

from .matcher import ProductMatcher
from .navigator import SearchNavigator
from .shop_scraper import ShopScraper
from .factory import ScraperFactory, EngineGroups

__all__ = [
    'ProductMatcher',
    'SearchNavigator',
    'ShopScraper',
    'ScraperFactory',
    'EngineGroups',
]
