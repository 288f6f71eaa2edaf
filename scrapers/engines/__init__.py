# Fetch engines - static HTML parsing and browser rendering behind one interface

from .base import Engine, Element
from .static_engine import StaticEngine, SoupElement
from .browser_engine import BrowserEngine, LocatorElement

__all__ = [
    'Engine',
    'Element',
    'StaticEngine',
    'SoupElement',
    'BrowserEngine',
    'LocatorElement',
]
