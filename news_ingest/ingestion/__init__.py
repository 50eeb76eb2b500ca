"""Ingestion helpers for normalizing feed items and extracting article text."""

from .extractor import ArticleFetchError, ExtractionError, extract_article_text, fetch_full_text
from .normalizer import normalize_items

__all__ = [
    "ArticleFetchError",
    "ExtractionError",
    "extract_article_text",
    "fetch_full_text",
    "normalize_items",
]
