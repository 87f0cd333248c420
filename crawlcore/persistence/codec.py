"""JSON encoding of tasks, WAL events and snapshots.

Every encoded object carries a `type` discriminator so a WAL line or
snapshot file can be decoded without outside context.
"""

import json
from typing import Any, Dict

from crawlcore.errors import PersistenceError
from crawlcore.models.data_models import OriginKind, ProcessingTask, RoutingHint, TaskId, TaskOrigin
from crawlcore.persistence.events import (
    FrontierOffered,
    FrontierPolled,
    FrontierSnapshot,
    InFlightPut,
    InFlightRemoved,
    InFlightSnapshot,
    RetryReleased,
    RetryScheduled,
    RetrySnapshot,
    Snapshot,
    StateEvent,
)


def task_to_dict(task: ProcessingTask) -> Dict[str, Any]:
    return {
        "id": task.id.value,
        "url": task.url,
        "attempt": task.attempt,
        "parent_url": task.parent_url,
        "origin": {
            "kind": task.origin.kind.value,
            "reason": task.origin.reason,
            "parent_id": task.origin.parent_id.value if task.origin.parent_id else None,
        },
        "depth": task.depth,
        "discovered_at": task.discovered_at,
        "priority": task.priority,
        "hint": task.hint.value,
        "scheduled_at": task.scheduled_at,
    }


def task_from_dict(data: Dict[str, Any]) -> ProcessingTask:
    origin = data.get("origin") or {}
    parent_id = origin.get("parent_id")
    return ProcessingTask(
        id=TaskId(data["id"]),
        url=data["url"],
        attempt=int(data.get("attempt", 0)),
        parent_url=data.get("parent_url"),
        origin=TaskOrigin(
            kind=OriginKind(origin.get("kind", OriginKind.SEED.value)),
            reason=origin.get("reason", ""),
            parent_id=TaskId(parent_id) if parent_id else None,
        ),
        depth=int(data.get("depth", 0)),
        discovered_at=float(data.get("discovered_at", 0.0)),
        priority=int(data.get("priority", 0)),
        hint=RoutingHint(data.get("hint", RoutingHint.DEFAULT.value)),
        scheduled_at=float(data.get("scheduled_at", 0.0)),
    )


def event_to_dict(event: StateEvent) -> Dict[str, Any]:
    if isinstance(event, FrontierOffered):
        return {"type": "frontier.offered", "task": task_to_dict(event.task)}
    if isinstance(event, FrontierPolled):
        return {"type": "frontier.polled", "task_id": event.task_id.value}
    if isinstance(event, InFlightPut):
        return {"type": "inflight.put", "task": task_to_dict(event.task)}
    if isinstance(event, InFlightRemoved):
        return {"type": "inflight.removed", "task_id": event.task_id.value}
    if isinstance(event, RetryScheduled):
        return {
            "type": "retry.scheduled",
            "task": task_to_dict(event.task),
            "at": event.at,
            "reason": event.reason,
        }
    if isinstance(event, RetryReleased):
        return {"type": "retry.released", "task_id": event.task_id.value}
    raise PersistenceError(f"Unknown WAL event type: {type(event).__name__}")


def event_from_dict(data: Dict[str, Any]) -> StateEvent:
    kind = data.get("type")
    if kind == "frontier.offered":
        return FrontierOffered(task_from_dict(data["task"]))
    if kind == "frontier.polled":
        return FrontierPolled(TaskId(data["task_id"]))
    if kind == "inflight.put":
        return InFlightPut(task_from_dict(data["task"]))
    if kind == "inflight.removed":
        return InFlightRemoved(TaskId(data["task_id"]))
    if kind == "retry.scheduled":
        return RetryScheduled(task_from_dict(data["task"]), float(data["at"]), data.get("reason"))
    if kind == "retry.released":
        return RetryReleased(TaskId(data["task_id"]))
    raise PersistenceError(f"Unknown WAL event type: {kind!r}")


def encode_event(event: StateEvent) -> str:
    """Encode an event as a single JSON line (without the newline)."""
    return json.dumps(event_to_dict(event), separators=(",", ":"))


def decode_event(line: str) -> StateEvent:
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise PersistenceError(f"Malformed WAL line: {e}") from e
    if not isinstance(data, dict):
        raise PersistenceError("Malformed WAL line: expected a JSON object")
    try:
        return event_from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise PersistenceError(f"Malformed WAL event: {e}") from e


def snapshot_to_dict(snapshot: Snapshot) -> Dict[str, Any]:
    if isinstance(snapshot, FrontierSnapshot):
        return {"type": "frontier", "tasks": [task_to_dict(t) for t in snapshot.tasks]}
    if isinstance(snapshot, InFlightSnapshot):
        return {"type": "inflight", "tasks": [task_to_dict(t) for t in snapshot.tasks]}
    if isinstance(snapshot, RetrySnapshot):
        return {"type": "retry", "entries": [event_to_dict(e) for e in snapshot.entries]}
    raise PersistenceError(f"Unknown snapshot type: {type(snapshot).__name__}")


def snapshot_from_dict(data: Dict[str, Any]) -> Snapshot:
    kind = data.get("type")
    try:
        if kind == "frontier":
            return FrontierSnapshot([task_from_dict(t) for t in data.get("tasks", [])])
        if kind == "inflight":
            return InFlightSnapshot([task_from_dict(t) for t in data.get("tasks", [])])
        if kind == "retry":
            return RetrySnapshot([event_from_dict(e) for e in data.get("entries", [])])
    except (KeyError, TypeError, ValueError) as e:
        raise PersistenceError(f"Malformed snapshot: {e}") from e
    raise PersistenceError(f"Unknown snapshot type: {kind!r}")
