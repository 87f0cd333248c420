"""Parser registry keyed by content type."""

import json
from typing import Dict, Optional, Protocol

from crawlcore.errors import ParseError
from crawlcore.models.data_models import FetchResult, ParsedDocument


class Parser(Protocol):

    def parse(self, result: FetchResult) -> ParsedDocument:
        ...


def _charset(result: FetchResult) -> str:
    content_type = result.headers.get("content-type", "")
    for part in content_type.split(";")[1:]:
        name, _, value = part.strip().partition("=")
        if name.lower() == "charset" and value:
            return value.strip('"')
    return "utf-8"


class TextParser:
    """Decodes the body to text. Markup is left untouched."""

    def parse(self, result: FetchResult) -> ParsedDocument:
        try:
            text = result.body.decode(_charset(result), errors="replace")
        except LookupError as e:
            raise ParseError(f"Unknown charset for {result.final_url}") from e
        return ParsedDocument(url=result.final_url, content_type=result.content_type, content=text)


class JsonParser:

    def parse(self, result: FetchResult) -> ParsedDocument:
        try:
            data = json.loads(result.body.decode(_charset(result)))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ParseError(f"Invalid JSON from {result.final_url}: {e}") from e
        return ParsedDocument(url=result.final_url, content_type=result.content_type, content=data)


class ParserRegistry:
    """Maps bare content types (no parameters) to parsers."""

    def __init__(self, parsers: Optional[Dict[str, Parser]] = None):
        self._parsers: Dict[str, Parser] = {}
        for content_type, parser in (parsers or {}).items():
            self.register(content_type, parser)

    @classmethod
    def default(cls) -> "ParserRegistry":
        text = TextParser()
        return cls({
            "text/plain": text,
            "text/html": text,
            "application/xhtml+xml": text,
            "application/json": JsonParser(),
        })

    def register(self, content_type: str, parser: Parser) -> None:
        self._parsers[content_type.lower()] = parser

    def resolve(self, content_type: Optional[str]) -> Optional[Parser]:
        if not content_type:
            return None
        return self._parsers.get(content_type.split(";")[0].strip().lower())
