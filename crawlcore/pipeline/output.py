"""JSON output formatter for crawl summaries.

Serializes the counters of a drained crawl together with its dead
letters and, optionally, the decision log. Timestamps are written as
ISO-8601 UTC strings.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from crawlcore.models.data_models import CrawlSummary, DeadLetterItem, DecisionLogEntry


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class JSONOutputFormatter:
    """
    Formats crawl summaries as JSON.

    Example output structure:
    {
        "summary": {
            "seeded": 1000,
            "completed": 900,
            "dead_lettered": 100,
            "retries_scheduled": 300,
            "politeness_deferrals": 0,
            "discarded": 0,
            "elapsed_seconds": 1.23,
            "drained": true
        },
        "remaining": {"frontier": 0, "retry": 0, "in_flight": 0},
        "dead_letters": [...],
        "decisions": [...]
    }
    """

    def __init__(self, include_decisions: bool = True):
        self.include_decisions = include_decisions

    def format(self, summary: CrawlSummary) -> Dict[str, Any]:
        """
        Format crawl summary as JSON-serializable dictionary.

        Args:
            summary: Summary returned by Crawler.run_until_drained()

        Returns:
            Dictionary with summary, remaining, dead_letters and decisions sections
        """
        data = {
            "summary": self._format_summary(summary),
            "remaining": {
                "frontier": summary.frontier_size,
                "retry": summary.retry_size,
                "in_flight": summary.in_flight_size,
            },
            "dead_letters": self._format_dead_letters(summary.dead_letters),
        }
        if self.include_decisions:
            data["decisions"] = self._format_decisions(summary.decisions)
        return data

    def _format_summary(self, summary: CrawlSummary) -> Dict[str, Any]:
        return {
            "seeded": summary.seeded,
            "completed": summary.completed,
            "dead_lettered": summary.dead_lettered,
            "retries_scheduled": summary.retries_scheduled,
            "politeness_deferrals": summary.politeness_deferrals,
            "discarded": summary.discarded,
            "elapsed_seconds": round(summary.elapsed_seconds, 2),
            "drained": summary.drained,
        }

    def _format_dead_letters(self, items: List[DeadLetterItem]) -> list:
        return [
            {
                "task_id": str(item.task.id),
                "url": item.task.url,
                "attempt": item.task.attempt,
                "reason": item.reason,
                "route": item.route_id,
                "error": item.error,
                "dead_at": _iso(item.dead_at),
            }
            for item in items
        ]

    def _format_decisions(self, entries: List[DecisionLogEntry]) -> list:
        return [
            {
                "task_id": str(entry.task_id) if entry.task_id else None,
                "url": entry.url,
                "outcome": entry.outcome.value,
                "reason": entry.reason,
                "attempt": entry.attempt,
                "route": entry.route_id,
                "timestamp": _iso(entry.timestamp),
            }
            for entry in entries
        ]

    def save(self, summary: CrawlSummary, path: str = "out/summary.json") -> None:
        """
        Save formatted summary to JSON file.

        Creates parent directories if they don't exist.

        Args:
            summary: Crawl summary to save
            path: Output file path (default: out/summary.json)
        """
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(self.format(summary), f, indent=2, ensure_ascii=False)
