"""Inbound route translation."""

from .translator import UrlTranslator, make_cache_key

__all__ = ["UrlTranslator", "make_cache_key"]
