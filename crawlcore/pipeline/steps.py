"""Built-in pipeline steps tying the fetcher and parsers into a route."""

from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from crawlcore.errors import ConfigurationError, FetchError, ParseError
from crawlcore.fetcher.http_client import Fetcher
from crawlcore.models.data_models import Continue, Done, Fail, FetchRequest, ParsedDocument, PipelineResult, RoutingHint

if TYPE_CHECKING:
    from crawlcore.engine.context import ProcessingContext


class FetchStep:
    """
    Fetches the task URL and stores the result on the context.

    Uses the run's fetcher unless one is given. HTTP statuses >= 400 fail
    the step with a FetchError carrying the status, so the retry policy
    can tell throttling from missing pages.
    """

    def __init__(self, fetcher: Optional[Fetcher] = None, headers: Optional[Dict[str, str]] = None, id: str = "fetch"):
        self.id = id
        self.fetcher = fetcher
        self.headers = dict(headers or {})

    def run(self, ctx: "ProcessingContext") -> PipelineResult:
        fetcher = self.fetcher or ctx.run.fetcher
        if fetcher is None:
            return Fail(self.id, ConfigurationError("No fetcher configured"))

        result = fetcher.fetch(FetchRequest(ctx.task.url, self.headers))
        ctx.fetch_result = result
        if result.status >= 400:
            return Fail(self.id, FetchError(f"HTTP {result.status} for {ctx.task.url}", url=ctx.task.url, status=result.status))
        return Continue(self.id)


class ParseStep:
    """Parses the fetched body with the parser registered for its content type."""

    def __init__(self, required: bool = False, id: str = "parse"):
        self.id = id
        self.required = required

    def run(self, ctx: "ProcessingContext") -> PipelineResult:
        if ctx.fetch_result is None:
            return Fail(self.id, ParseError("Nothing fetched to parse"))

        parser = ctx.run.parsers.resolve(ctx.fetch_result.content_type)
        if parser is None:
            if self.required:
                return Fail(self.id, ParseError(f"No parser for {ctx.fetch_result.content_type!r}"))
            # Unparseable content ends the pipeline successfully
            return Done(self.id)

        ctx.document = parser.parse(ctx.fetch_result)
        return Continue(self.id)


def extract_html_links(document: ParsedDocument) -> List[str]:
    """href values of anchor tags, in document order."""
    if not isinstance(document.content, str):
        return []
    soup = BeautifulSoup(document.content, "html.parser")
    links = []
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if href:
            links.append(href)
    return links


class EnqueueLinksStep:
    """Offers every link the extractor finds in the parsed document."""

    def __init__(
        self,
        extract: Callable[[ParsedDocument], Iterable[str]] = extract_html_links,
        hint: Optional[RoutingHint] = None,
        id: str = "enqueue",
    ):
        self.id = id
        self.extract = extract
        self.hint = hint

    def run(self, ctx: "ProcessingContext") -> PipelineResult:
        if ctx.document is None:
            return Continue(self.id)
        for url in self.extract(ctx.document):
            ctx.enqueue(url, self.hint)
        return Continue(self.id)
