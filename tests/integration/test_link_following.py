"""Link discovery over a small stub site."""

import pytest

from crawlcore.engine import HostScope, MaxDepthScope, build_crawler
from crawlcore.models.data_models import Done, Outcome, Reroute, RoutingHint
from crawlcore.pipeline import (
    EnqueueLinksStep,
    FetchStep,
    ParseStep,
    Pipeline,
    PipelineStep,
    Route,
    any_task,
    hint_is,
    path_prefix,
)
from crawlcore.pipeline.main import default_routes
from tests.fixtures.sample_data import StubFetcher, html_page


def site_pages():
    return {
        "http://example.com/": html_page("http://example.com/", ["/a", "/b", "http://ads.net/x", "mailto:me@x.y"]),
        "http://example.com/a": html_page("http://example.com/a", ["/", "/c#top", "b"]),
        "http://example.com/b": html_page("http://example.com/b", ["/c", "/docs/intro"]),
        "http://example.com/c": html_page("http://example.com/c", []),
        "http://example.com/docs/intro": html_page("http://example.com/docs/intro", ["/docs/missing"]),
    }


@pytest.mark.integration
@pytest.mark.parametrize("mode", ["single", "executor"])
def test_follows_in_scope_links_once(fast_config, logger, mode):
    fetcher = StubFetcher(site_pages())
    config = fast_config.model_copy(update={"run_mode": mode})

    crawler = build_crawler(
        config,
        default_routes(follow_links=True),
        fetcher=fetcher,
        scope=HostScope(["example.com"]),
        logger=logger,
    )
    with crawler:
        crawler.seed("http://example.com/", RoutingHint.HTML)
        summary = crawler.run_until_drained()

    assert sorted(fetcher.requests) == sorted(list(site_pages()) + ["http://example.com/docs/missing"])
    assert summary.completed == 5
    assert summary.dead_lettered == 1
    assert crawler.dead_letters.entries()[0].task.url == "http://example.com/docs/missing"

    rejected = {e.url: e.reason for e in crawler.decision_log.entries(Outcome.ENQUEUE_REJECTED)}
    assert rejected["http://ads.net/x"] == "host ads.net out of scope"
    assert rejected["mailto:me@x.y"] == "unsupported scheme"
    accepted = crawler.decision_log.entries(Outcome.ENQUEUE_ACCEPTED)
    assert len(accepted) == 5


@pytest.mark.integration
def test_depth_scope_stops_at_max_depth(fast_config, logger):
    fetcher = StubFetcher(site_pages())
    crawler = build_crawler(
        fast_config,
        default_routes(follow_links=True),
        fetcher=fetcher,
        scope=MaxDepthScope(1),
        logger=logger,
    )
    with crawler:
        crawler.seed("http://example.com/", RoutingHint.HTML)
        crawler.run_until_drained()

    # Depth 2 pages are never fetched; the depth scope ignores hosts
    assert "http://example.com/c" not in fetcher.requests
    assert sorted(fetcher.requests) == [
        "http://ads.net/x",
        "http://example.com/",
        "http://example.com/a",
        "http://example.com/b",
    ]
    accepted = crawler.decision_log.entries(Outcome.ENQUEUE_ACCEPTED)
    assert {entry.url for entry in accepted} == {"http://example.com/a", "http://example.com/b", "http://ads.net/x"}
    rejected = crawler.decision_log.entries(Outcome.ENQUEUE_REJECTED)
    assert next(e.reason for e in rejected if e.url == "http://example.com/c") == "depth 2 exceeds 1"


@pytest.mark.integration
def test_routes_split_by_path_and_reroute(fast_config, logger):
    handled = []

    def docs_step(ctx):
        handled.append(("docs", ctx.task.url))
        return Done("docs")

    def sniff(ctx):
        if ctx.fetch_result.final_url.endswith("/c"):
            return Reroute("sniff", "leaf")
        return None

    def leaf_step(ctx):
        handled.append(("leaf", ctx.task.url))
        return Done("leaf")

    routes = [
        Route("docs", path_prefix("/docs"), Pipeline("docs", [FetchStep(), PipelineStep("docs", docs_step)])),
        Route("html", hint_is(RoutingHint.HTML), Pipeline("html", [
            FetchStep(),
            PipelineStep("sniff", sniff),
            ParseStep(),
            EnqueueLinksStep(hint=RoutingHint.HTML),
        ])),
        Route("leaf", any_task, Pipeline("leaf", [PipelineStep("leaf", leaf_step)])),
    ]
    crawler = build_crawler(
        fast_config, routes, fetcher=StubFetcher(site_pages()), scope=HostScope(["example.com"]), logger=logger,
    )
    with crawler:
        crawler.seed("http://example.com/", RoutingHint.HTML)
        summary = crawler.run_until_drained()

    assert sorted(handled) == [("docs", "http://example.com/docs/intro"), ("leaf", "http://example.com/c")]
    assert summary.completed == 5
    done_routes = {e.url: e.route_id for e in crawler.decision_log.entries(Outcome.DONE)}
    assert done_routes["http://example.com/c"] == "leaf"
    assert done_routes["http://example.com/docs/intro"] == "docs"
    assert done_routes["http://example.com/a"] == "html"
