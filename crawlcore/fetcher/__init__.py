"""Fetch and parse collaborators used by pipeline steps."""

from .http_client import Fetcher, HTTPFetcher
from .parsers import JsonParser, Parser, ParserRegistry, TextParser

__all__ = ["Fetcher", "HTTPFetcher", "JsonParser", "Parser", "ParserRegistry", "TextParser"]
