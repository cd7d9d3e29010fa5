"""Core functionality for Chrome DevTools Protocol connection."""

from .connector import ChromeConnector, ChromeConnectionError

__all__ = [
    'ChromeConnector',
    'ChromeConnectionError',
]
